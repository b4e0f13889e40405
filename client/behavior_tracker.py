"""Client-side behavior tracker feeding the recommendation system.

Views are queued as soon as they happen; searches are debounced per query
text so a burst of identical submissions yields one event. Queued events are
POSTed one at a time, in order, whenever the queue reaches ``batch_size`` and
on a fixed interval. Delivery problems are logged and retried a bounded
number of times; they never reach the code that called ``track_*``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx
from prometheus_client import Counter

from client.events import QueuedEvent
from client.scheduler import Scheduler, TaskHandle

logger = logging.getLogger(__name__)

TRACKER_EVENTS = Counter(
    "tracker_events_total",
    "Tracking events by delivery outcome.",
    ("outcome",),
)


@dataclass(frozen=True)
class TrackerConfig:
    endpoint: str = "/api/student/books/track"
    debounce_s: float = 0.3
    flush_interval_s: float = 5.0
    batch_size: int = 10
    max_retries: int = 5


def _is_retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class BehaviorTracker:
    """Debounce, batch and deliver view/search events for one session."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        scheduler: Scheduler,
        config: TrackerConfig | None = None,
    ) -> None:
        self._client = client
        self._scheduler = scheduler
        self._config = config or TrackerConfig()
        self._queue: list[QueuedEvent] = []
        self._debounce_timers: dict[str, TaskHandle] = {}
        self._flush_timer: TaskHandle | None = None
        self._threshold_flush: asyncio.Task | None = None
        # Serializes flushes so a size-triggered flush never races the timer.
        self._flush_lock = asyncio.Lock()
        self._enabled = True

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def queued_events(self) -> tuple[QueuedEvent, ...]:
        return tuple(self._queue)

    @property
    def pending_searches(self) -> int:
        return len(self._debounce_timers)

    def start(self) -> None:
        """Start the periodic flush; calling it again is a no-op."""
        if self._flush_timer is None:
            self._flush_timer = self._scheduler.call_every(
                self._config.flush_interval_s, self.flush_queue
            )

    def stop_auto_flush(self) -> None:
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None

    def track_book_view(self, book_id: str | int | None) -> None:
        if not self._enabled or not book_id:
            return
        self._add_to_queue(QueuedEvent.view(str(book_id)))

    def track_search(self, query: str | None, filters: dict[str, Any] | None = None) -> None:
        """Queue a search once the same query text has been quiet for the debounce window."""
        if not self._enabled or not query or not query.strip():
            return
        key = f"search_{query}"
        pending = self._debounce_timers.pop(key, None)
        if pending is not None:
            pending.cancel()
        self._debounce_timers[key] = self._scheduler.call_later(
            self._config.debounce_s, self._emit_search, key, query, filters
        )

    def _emit_search(self, key: str, query: str, filters: dict[str, Any] | None) -> None:
        self._debounce_timers.pop(key, None)
        if self._enabled:
            self._add_to_queue(QueuedEvent.search(query, filters))

    def _add_to_queue(self, event: QueuedEvent) -> None:
        self._queue.append(event)
        if len(self._queue) < self._config.batch_size:
            return
        if self._threshold_flush is None or self._threshold_flush.done():
            self._threshold_flush = self._scheduler.spawn(self.flush_queue())

    async def flush_queue(self) -> None:
        """Send every queued event, oldest first, one request at a time."""
        async with self._flush_lock:
            if not self._queue:
                return
            batch, self._queue = self._queue, []
            for index, event in enumerate(batch):
                try:
                    response = await self._client.post(
                        self._config.endpoint, json=event.to_payload()
                    )
                    response.raise_for_status()
                except httpx.HTTPStatusError as exc:
                    status_code = exc.response.status_code
                    if _is_retryable(status_code):
                        logger.error("Failed to track events: HTTP %d", status_code)
                        self._requeue(batch[index:])
                        return
                    logger.warning(
                        "Tracking endpoint rejected %s event with HTTP %d, dropping it",
                        event.event_type,
                        status_code,
                    )
                    TRACKER_EVENTS.labels(outcome="dropped").inc()
                    continue
                except httpx.HTTPError as exc:
                    logger.error("Failed to track events: %s", exc)
                    self._requeue(batch[index:])
                    return
                TRACKER_EVENTS.labels(outcome="sent").inc()

    def _requeue(self, events: list[QueuedEvent]) -> None:
        if not self._enabled:
            # Disabled while the flush was in flight.
            return
        retry: list[QueuedEvent] = []
        for event in events:
            updated = event.after_failure(self._config.max_retries)
            if updated.dropped:
                logger.warning(
                    "Dropping %s event after %d retries", event.event_type, event.retry_count
                )
                TRACKER_EVENTS.labels(outcome="dropped").inc()
            else:
                TRACKER_EVENTS.labels(outcome="retried").inc()
                retry.append(updated)
        # Undelivered events go back ahead of anything queued during the flush.
        self._queue[:0] = retry

    def _cancel_debounce_timers(self) -> None:
        for timer in self._debounce_timers.values():
            timer.cancel()
        self._debounce_timers.clear()

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        """Stop tracking and discard queued events and pending searches."""
        self._enabled = False
        self._queue.clear()
        self._cancel_debounce_timers()

    async def cleanup(self) -> None:
        """Stop the periodic flush and deliver what is still queued."""
        self.stop_auto_flush()
        self._cancel_debounce_timers()
        await self.flush_queue()
