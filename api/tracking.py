"""Endpoints that record student interactions for recommendations."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse
from prometheus_client import Counter

from api.cache import invalidate_cache_prefix
from api.handler import error_response, session_email, unauthorized
from api.models import ErrorResponse, TrackResponse, TrackViewResponse
from api.rate_limit import TRACKING, rate_limited_response
from api.recommendations import POPULAR_BOOKS_NAMESPACE
from store import find_book, increment_popularity, record_interaction

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/student/books", tags=["tracking"])

EVENT_TYPES = ("view", "search", "bookmark")
BOOK_EVENTS = ("view", "bookmark")

INTERACTIONS_RECORDED = Counter(
    "interactions_recorded_total",
    "Student interactions stored, by event type.",
    ("event_type",),
)

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    status: {"model": ErrorResponse} for status in (400, 401, 404, 429, 500)
}


def _normalize(value: Any) -> str:
    """Coerce incoming values to trimmed strings for validation."""
    if value is None:
        return ""
    return str(value).strip()


def _validate_event_payload(payload: dict[str, Any]) -> str | None:
    """Return the first validation error for a tracking payload, if any."""
    event_type = _normalize(payload.get("eventType"))
    if event_type not in EVENT_TYPES:
        return "Invalid event type. Must be 'view', 'search', or 'bookmark'"
    if event_type in BOOK_EVENTS and not _normalize(payload.get("bookId")):
        return "bookId is required for view and bookmark events"
    if event_type == "search" and not _normalize(payload.get("searchQuery")):
        return "searchQuery is required for search events"
    filters = payload.get("searchFilters")
    if filters is not None and not isinstance(filters, dict):
        return "searchFilters must be an object"
    return None


def _gate(request: Request, email: str) -> JSONResponse | None:
    """Return a 429 response when the caller is over the tracking budget."""
    gate = request.app.state.rate_limits
    result = gate.check(TRACKING, email)
    if result.allowed:
        return None
    return rate_limited_response(result, gate.get_limiter(TRACKING).limit)


def _record_view(request: Request, email: str, book: dict[str, Any]) -> int:
    settings = request.app.state.settings
    interaction_id = record_interaction(
        email,
        "view",
        book=book,
        retention_days=settings.interaction_retention_days,
    )
    increment_popularity(book["id"])
    # Popularity changed, so the cached fallback ordering is stale.
    invalidate_cache_prefix(POPULAR_BOOKS_NAMESPACE)
    return interaction_id


@router.post("/track", response_model=TrackResponse, responses=_ERROR_RESPONSES)
def track_interaction(
    request: Request,
    payload: dict[str, Any] = Body(..., description="Interaction event"),
):
    """Store a view, bookmark or search event for the signed-in student."""
    email = session_email(request)
    if email is None:
        return unauthorized()
    limited = _gate(request, email)
    if limited is not None:
        return limited

    error = _validate_event_payload(payload)
    if error:
        return error_response(400, error)

    event_type = _normalize(payload.get("eventType"))
    try:
        if event_type in BOOK_EVENTS:
            book = find_book(_normalize(payload.get("bookId")))
            if book is None:
                return error_response(404, "Book not found")
            if event_type == "view":
                interaction_id = _record_view(request, email, book)
            else:
                interaction_id = record_interaction(
                    email,
                    event_type,
                    book=book,
                    retention_days=request.app.state.settings.interaction_retention_days,
                )
        else:
            interaction_id = record_interaction(
                email,
                event_type,
                search_query=_normalize(payload.get("searchQuery")),
                search_filters=payload.get("searchFilters") or {},
                retention_days=request.app.state.settings.interaction_retention_days,
            )
    except Exception as exc:
        logger.exception("track interaction failed")
        return error_response(500, str(exc) or "Failed to track interaction")

    INTERACTIONS_RECORDED.labels(event_type=event_type).inc()
    return {"ok": True, "interactionId": str(interaction_id)}


@router.post(
    "/{book_ref}/track-view",
    response_model=TrackViewResponse,
    responses=_ERROR_RESPONSES,
)
def track_view(book_ref: str, request: Request):
    """Record a view for a book addressed by id or slug."""
    email = session_email(request)
    if email is None:
        return unauthorized()
    limited = _gate(request, email)
    if limited is not None:
        return limited
    if not book_ref.strip():
        return error_response(400, "Missing book identifier")

    try:
        book = find_book(book_ref)
        if book is None:
            return error_response(404, "Book not found")
        _record_view(request, email, book)
    except Exception as exc:
        logger.exception("track view failed")
        return error_response(500, str(exc) or "Failed to track view")

    INTERACTIONS_RECORDED.labels(event_type="view").inc()
    return {"ok": True}
