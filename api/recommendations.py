"""Personalized book recommendations for the signed-in student."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any

from fastapi import APIRouter, Query, Request

from api.cache import cache_query
from api.handler import error_response, session_email, unauthorized
from api.models import ErrorResponse, RecommendationsResponse
from api.rate_limit import RECOMMENDATIONS, rate_limited_response
from recommendation_engine import (
    EMPTY_BASED_ON,
    analyze_user_history,
    popular_recommendations,
    rank_books,
)
from store import candidate_books, library_entries, popular_books, recent_interactions
from utils.logging_setup import log_outcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/student/books", tags=["recommendations"])

POPULAR_BOOKS_NAMESPACE = "books.popular"
DEFAULT_LIMIT = 10
# Candidates fetched per requested recommendation before scoring.
CANDIDATE_FACTOR = 3


@cache_query(POPULAR_BOOKS_NAMESPACE)
def _popular_books(limit: int) -> list[dict[str, Any]]:
    return popular_books(limit)


def _popular_payload(limit: int) -> dict[str, Any]:
    return {
        "ok": True,
        "recommendations": popular_recommendations(_popular_books(limit)),
        "basedOn": dict(EMPTY_BASED_ON),
    }


def _parse_limit(raw: str | None, ceiling: int) -> int | None:
    """Clamp the requested limit to ``[1, ceiling]``; None when unparseable."""
    if raw is None or not raw.strip():
        return min(DEFAULT_LIMIT, ceiling)
    try:
        value = int(raw)
    except ValueError:
        return None
    return max(min(value, ceiling), 1)


def _build_recommendations(
    email: str,
    context: str,
    limit: int,
    current_book_id: str | None,
    retention_days: int,
) -> dict[str, Any]:
    since = dt.datetime.now(dt.UTC) - dt.timedelta(days=retention_days)
    history = recent_interactions(email, since)
    if not history:
        return _popular_payload(limit)

    profile = analyze_user_history(history, context)
    library = library_entries(email)
    exclude_book_id = None
    if current_book_id and current_book_id.strip().isdigit():
        exclude_book_id = int(current_book_id)
    candidates = candidate_books(
        categories=profile.top_categories,
        tags=profile.top_tags,
        authors=profile.top_authors,
        limit=limit * CANDIDATE_FACTOR,
        exclude_isbns=[entry["isbn"] for entry in library if entry.get("isbn")],
        exclude_titles=[entry["title"] for entry in library if entry.get("title")],
        exclude_book_id=exclude_book_id,
    )
    if not candidates:
        return _popular_payload(limit)

    return {
        "ok": True,
        "recommendations": rank_books(candidates, profile, limit),
        "basedOn": profile.based_on(),
    }


@router.get(
    "/recommendations",
    response_model=RecommendationsResponse,
    responses={status: {"model": ErrorResponse} for status in (400, 401, 429, 500)},
)
def get_recommendations(
    request: Request,
    limit: str | None = Query(None, description="Maximum number of recommendations"),
    context: str = Query("browse", description="Where the list is shown: browse or search"),
    currentBookId: str | None = Query(None, description="Book to leave out of the results"),  # noqa: N803
):
    """Rank available books against the student's recent interactions."""
    email = session_email(request)
    if email is None:
        return unauthorized()
    gate = request.app.state.rate_limits
    result = gate.check(RECOMMENDATIONS, email)
    if not result.allowed:
        return rate_limited_response(result, gate.get_limiter(RECOMMENDATIONS).limit)

    settings = request.app.state.settings
    parsed_limit = _parse_limit(limit, settings.max_recommendations)
    if parsed_limit is None:
        return error_response(400, "limit must be an integer")

    try:
        payload = _build_recommendations(
            email,
            context or "browse",
            parsed_limit,
            currentBookId,
            settings.interaction_retention_days,
        )
    except Exception as exc:
        logger.exception("get recommendations failed")
        return error_response(500, str(exc) or "Failed to get recommendations")

    log_outcome(
        logger,
        "recommendations served",
        has_data=bool(payload["recommendations"]),
        extra={"context": context, "count": len(payload["recommendations"])},
    )
    return payload
