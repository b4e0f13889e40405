"""Tracking events queued by the behavior tracker."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Literal

EventType = Literal["view", "search"]


class DeliveryState(Enum):
    PENDING = "pending"
    RETRYING = "retrying"
    DROPPED = "dropped"


def _utc_timestamp() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


@dataclass(frozen=True)
class QueuedEvent:
    """A view or search waiting to be POSTed to the tracking endpoint."""

    event_type: EventType
    book_id: str | None = None
    search_query: str | None = None
    search_filters: dict[str, Any] | None = None
    timestamp: str = field(default_factory=_utc_timestamp)
    retry_count: int = 0
    state: DeliveryState = DeliveryState.PENDING

    @classmethod
    def view(cls, book_id: str) -> QueuedEvent:
        return cls(event_type="view", book_id=str(book_id))

    @classmethod
    def search(cls, query: str, filters: dict[str, Any] | None = None) -> QueuedEvent:
        return cls(event_type="search", search_query=query.strip(), search_filters=filters or {})

    @property
    def dropped(self) -> bool:
        return self.state is DeliveryState.DROPPED

    def after_failure(self, max_retries: int) -> QueuedEvent:
        """Return the event's state after one more failed delivery.

        The event is retried until ``retry_count`` reaches ``max_retries``;
        the failure after that drops it.
        """
        if self.retry_count >= max_retries:
            return replace(self, state=DeliveryState.DROPPED)
        return replace(self, retry_count=self.retry_count + 1, state=DeliveryState.RETRYING)

    def to_payload(self) -> dict[str, Any]:
        """Request body for the tracking endpoint; retry bookkeeping stays local."""
        payload: dict[str, Any] = {"eventType": self.event_type}
        if self.book_id is not None:
            payload["bookId"] = self.book_id
        if self.search_query is not None:
            payload["searchQuery"] = self.search_query
        if self.search_filters is not None:
            payload["searchFilters"] = self.search_filters
        payload["timestamp"] = self.timestamp
        return payload
