from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

log = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class PollHandle:
    id: int


class PollScheduler:
    """
    Fires `on_tick` now and then every `interval_ms` until cancelled. Each
    tick runs as its own task, so a slow tick does not hold back the next one;
    callers that care about ordering put a RefreshCoordinator behind `on_tick`.
    """

    def __init__(self) -> None:
        self._tasks: dict[int, asyncio.Task] = {}
        self._ticks: dict[int, set[asyncio.Task]] = {}
        self._next_id = 0

    def start(self, interval_ms: int, on_tick: Callable[[], Awaitable[None]]) -> PollHandle:
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be > 0, got {interval_ms}")
        self._next_id += 1
        handle = PollHandle(self._next_id)
        self._ticks[handle.id] = set()
        self._tasks[handle.id] = asyncio.create_task(self._loop(handle, interval_ms / 1000, on_tick))
        return handle

    async def _tick(self, handle: PollHandle, on_tick: Callable[[], Awaitable[None]]) -> None:
        try:
            await on_tick()
        except asyncio.CancelledError:
            raise
        except Exception:
            # keep polling; the next tick is a fresh attempt
            log.exception("poll #%d tick failed", handle.id)

    async def _loop(self, handle: PollHandle, interval_s: float, on_tick: Callable[[], Awaitable[None]]) -> None:
        inflight = self._ticks[handle.id]
        while True:
            t = asyncio.create_task(self._tick(handle, on_tick))
            inflight.add(t)
            t.add_done_callback(inflight.discard)
            await asyncio.sleep(interval_s)

    def _stop(self, handle_id: int) -> list[asyncio.Task]:
        tasks = list(self._ticks.pop(handle_id, ()))
        task = self._tasks.pop(handle_id, None)
        if task is not None:
            tasks.append(task)
        for t in tasks:
            t.cancel()
        return tasks

    def cancel(self, handle: PollHandle) -> bool:
        """Stop the poll and any tick still running; False if the handle is not active."""
        if handle.id not in self._tasks:
            return False
        self._stop(handle.id)
        return True

    def in_flight(self, handle: PollHandle) -> int:
        return len(self._ticks.get(handle.id, ()))

    def active(self) -> list[PollHandle]:
        return [PollHandle(i) for i in self._tasks]

    async def aclose(self) -> None:
        tasks: list[asyncio.Task] = []
        for handle_id in list(self._tasks):
            tasks.extend(self._stop(handle_id))
        await asyncio.gather(*tasks, return_exceptions=True)
