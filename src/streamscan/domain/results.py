"""Tagged responses for external calls and the fold that applies the partial-failure policy.

Every port call answers with one of ``Ok``, ``NotFound`` or ``TransientError``
instead of raising, so call sites have to handle absence explicitly.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, Hashable, Iterable, TypeVar, Union

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(slots=True, frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(slots=True, frozen=True)
class NotFound:
    key: str
    detail: str = "not found"


@dataclass(slots=True, frozen=True)
class TransientError:
    key: str
    error: str


Response = Union[Ok[T], NotFound, TransientError]


def failure_reason(resp: NotFound | TransientError) -> str:
    if isinstance(resp, NotFound):
        return f"not found: {resp.detail}"
    return f"transient: {resp.error}"


@dataclass(slots=True)
class Folded(Generic[K, V]):
    successes: dict[K, V] = field(default_factory=dict)
    skipped: dict[K, str] = field(default_factory=dict)


def fold_results(pairs: Iterable[tuple[K, Response[V]]]) -> Folded[K, V]:
    """Split ``(key, response)`` pairs into successes and skipped-with-reason."""
    out: Folded[K, V] = Folded()
    for key, resp in pairs:
        if isinstance(resp, Ok):
            out.successes[key] = resp.value
        else:
            out.skipped[key] = failure_reason(resp)
    return out
