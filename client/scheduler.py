"""Timer scheduling for the client-side tracker and recommendation cache.

Both components only ever need "run this later", "run this every N seconds"
and "run this coroutine now without waiting for it". :class:`AsyncioScheduler`
maps those onto the running event loop; :class:`ManualScheduler` runs them on a
virtual clock that only moves when :meth:`ManualScheduler.advance` is awaited.

Callbacks may be plain functions or return an awaitable; awaitables are run to
completion by the scheduler.
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Protocol

logger = logging.getLogger(__name__)

Callback = Callable[..., Any]


class TaskHandle:
    """Cancellation handle for a scheduled timer or periodic task."""

    def __init__(self, cancel: Callable[[], Any] | None = None) -> None:
        self._cancel = cancel
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._cancel is not None:
            self._cancel()


class Scheduler(Protocol):
    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callback, *args: Any) -> TaskHandle: ...

    def call_every(self, interval: float, callback: Callback, *args: Any) -> TaskHandle: ...

    def spawn(self, awaitable: Awaitable[Any]) -> asyncio.Task: ...

    async def drain(self) -> None: ...


class _TaskTracker:
    """Keep references to fire-and-forget tasks until they finish."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, awaitable: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("scheduled task failed", exc_info=task.exception())

    async def drain(self) -> None:
        """Wait until every spawned task, including ones spawned meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class AsyncioScheduler(_TaskTracker):
    """Scheduler backed by the running asyncio event loop."""

    def now(self) -> float:
        return time.monotonic()

    def _fire(self, callback: Callable[[], Any]) -> None:
        result = callback()
        if inspect.isawaitable(result):
            self.spawn(result)

    def call_later(self, delay: float, callback: Callback, *args: Any) -> TaskHandle:
        loop = asyncio.get_running_loop()
        timer = loop.call_later(max(delay, 0.0), self._fire, partial(callback, *args))
        return TaskHandle(timer.cancel)

    def call_every(self, interval: float, callback: Callback, *args: Any) -> TaskHandle:
        # Periodic loops are not tracked so drain() does not wait on them.
        task = asyncio.get_running_loop().create_task(
            self._run_every(interval, partial(callback, *args))
        )
        return TaskHandle(task.cancel)

    async def _run_every(self, interval: float, callback: Callable[[], Any]) -> None:
        while True:
            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            try:
                result = callback()
            except Exception:
                logger.exception("periodic task failed")
                continue
            if inspect.isawaitable(result):
                # Spawned, not awaited: cancelling the loop must not abort a run in progress.
                self.spawn(result)


@dataclass(order=True)
class _Timer:
    due: float
    seq: int
    callback: Callable[[], Any] = field(compare=False)
    interval: float | None = field(default=None, compare=False)
    cancelled: bool = field(default=False, compare=False)


class ManualScheduler(_TaskTracker):
    """Virtual-clock scheduler for deterministic tests."""

    def __init__(self, start: float = 0.0) -> None:
        super().__init__()
        self._now = start
        self._timers: list[_Timer] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    @property
    def pending_timers(self) -> int:
        return sum(1 for timer in self._timers if not timer.cancelled)

    def _push(self, delay: float, callback: Callable[[], Any], interval: float | None) -> TaskHandle:
        timer = _Timer(self._now + max(delay, 0.0), next(self._seq), callback, interval)
        heapq.heappush(self._timers, timer)

        def _cancel() -> None:
            timer.cancelled = True

        return TaskHandle(_cancel)

    def call_later(self, delay: float, callback: Callback, *args: Any) -> TaskHandle:
        return self._push(delay, partial(callback, *args), None)

    def call_every(self, interval: float, callback: Callback, *args: Any) -> TaskHandle:
        return self._push(interval, partial(callback, *args), interval)

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in order."""
        target = self._now + seconds
        while self._timers and self._timers[0].due <= target:
            timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            self._now = timer.due
            if timer.interval is not None:
                timer.due += timer.interval
                timer.seq = next(self._seq)
                heapq.heappush(self._timers, timer)
            result = timer.callback()
            if inspect.isawaitable(result):
                await result
            await self.drain()
        self._now = target
        await self.drain()
