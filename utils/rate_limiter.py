"""In-memory rate limiter for the tracking and recommendation endpoints.

Each identifier (normally the caller's email) maps to a deque of request
timestamps in arrival order. A request counts toward the budget while
``now - timestamp < window_seconds``; older timestamps are filtered on every
check and swept out for good by :meth:`RateLimiter.cleanup`.

The limiter is advisory backpressure only: state lives in process memory,
resets on restart and is not shared between server instances.
"""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime
from threading import Lock
from typing import TypeAlias

Timestamp: TypeAlias = float
EventDeque: TypeAlias = deque[Timestamp]


def _to_datetime(timestamp: Timestamp) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=UTC)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a single :meth:`RateLimiter.check_limit` call."""

    allowed: bool
    remaining: int
    reset_at: datetime
    # Whole seconds until a slot frees up; only set on rejection.
    retry_after: int | None = None


@dataclass(frozen=True)
class RateLimitUsage:
    used: int
    limit: int
    remaining: int


class RateLimiter:
    """Fixed-window request counter keyed by caller identity.

    ``check_limit`` is the gate used by route handlers: it records accepted
    requests and leaves rejected ones out of the history, so a caller that
    keeps hammering a closed window does not extend its own lockout.
    """

    _max_requests: int
    _window_seconds: float
    _events: dict[str, EventDeque]

    def __init__(self, max_requests: int, window_seconds: float) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._events: dict[str, EventDeque] = {}
        # Sync FastAPI handlers run on worker threads.
        self._lock = Lock()

    @property
    def limit(self) -> int:
        return self._max_requests

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def _prune_events(self, events: EventDeque, window_start: float) -> None:
        """Drop timestamps that have aged out of the current window.

        The deque is ordered by arrival time, so pruning stops as soon as the
        first remaining timestamp falls within the active window.
        """
        while events and events[0] <= window_start:
            events.popleft()

    def check_limit(self, identifier: str) -> RateLimitResult:
        """Admit or reject one request for ``identifier``."""
        now: Timestamp = time.time()
        window_start = now - self._window_seconds
        with self._lock:
            events = self._events.get(identifier)
            if events is None:
                events = deque()
            self._prune_events(events, window_start)
            if len(events) >= self._max_requests:
                reset_at = events[0] + self._window_seconds
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=_to_datetime(reset_at),
                    retry_after=math.ceil(reset_at - now),
                )
            remaining = self._max_requests - len(events) - 1
            events.append(now)
            self._events[identifier] = events
        return RateLimitResult(
            allowed=True,
            remaining=remaining,
            reset_at=_to_datetime(now + self._window_seconds),
        )

    def cleanup(self) -> int:
        """Sweep expired timestamps and forget idle identifiers.

        Returns the number of identifiers removed.
        """
        window_start = time.time() - self._window_seconds
        removed = 0
        with self._lock:
            for identifier in list(self._events):
                events = self._events[identifier]
                self._prune_events(events, window_start)
                if not events:
                    del self._events[identifier]
                    removed += 1
        return removed

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._events.pop(identifier, None)

    def get_usage(self, identifier: str) -> RateLimitUsage:
        """Report the current window without touching stored history."""
        window_start = time.time() - self._window_seconds
        with self._lock:
            events = self._events.get(identifier, ())
            used = sum(1 for timestamp in events if timestamp > window_start)
        return RateLimitUsage(
            used=used,
            limit=self._max_requests,
            remaining=max(self._max_requests - used, 0),
        )
