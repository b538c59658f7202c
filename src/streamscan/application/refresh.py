from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

from ..domain.errors import FatalEnumerationError
from ..domain.value_types import RefreshState

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class RefreshOutcome(Generic[T]):
    token: int
    applied: bool                 # False when superseded, closed, or failed
    value: T | None = None
    error: str | None = None


class RefreshCoordinator(Generic[T]):
    """
    Owns the visible result of one view. Each `refresh` takes a new token; a
    completion that is no longer the latest token, or that lands after
    `close`, leaves the state untouched. A fatal failure keeps the previous
    result visible and flips the state to "failed".
    """

    def __init__(self, name: str = "view") -> None:
        self.name = name
        self.state: RefreshState = "idle"
        self.latest: T | None = None
        self.error: str | None = None
        self._token = 0
        self._closed = False

    @property
    def token(self) -> int:
        return self._token

    @property
    def closed(self) -> bool:
        return self._closed

    def _is_current(self, token: int) -> bool:
        return not self._closed and token == self._token

    async def refresh(self, run: Callable[[], Awaitable[T]]) -> RefreshOutcome[T]:
        if self._closed:
            return RefreshOutcome(token=self._token, applied=False, error="closed")
        self._token += 1
        token = self._token
        self.state = "loading"
        try:
            value = await run()
        except FatalEnumerationError as e:
            if not self._is_current(token):
                log.debug("%s: dropping failure of stale refresh #%d", self.name, token)
                return RefreshOutcome(token=token, applied=False, error=str(e))
            log.warning("%s: refresh #%d failed: %s", self.name, token, e)
            self.state = "failed"
            self.error = str(e)
            return RefreshOutcome(token=token, applied=False, error=str(e))
        except Exception as e:
            # not a refresh failure; surface it, but do not leave the view loading
            if self._is_current(token):
                self.state = "failed"
                self.error = f"{type(e).__name__}: {e}"
            raise

        if not self._is_current(token):
            log.debug("%s: discarding stale refresh #%d (latest #%d)", self.name, token, self._token)
            return RefreshOutcome(token=token, applied=False, value=value)
        self.latest = value
        self.error = None
        self.state = "ready"
        return RefreshOutcome(token=token, applied=True, value=value)

    def close(self) -> None:
        """Teardown: any refresh still in flight resolves without touching state."""
        self._closed = True
