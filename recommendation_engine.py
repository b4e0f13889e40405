"""Score catalog books against a student's recent interactions."""

from __future__ import annotations

import datetime as dt
import math
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

RECENT_WINDOW = dt.timedelta(days=7)
MIN_RELEVANCE = 20
POPULAR_RELEVANCE = 50
POPULAR_REASON = "Popular with students"

# Search-context keyword hints: substring -> categories it implies.
_SEARCH_HINTS: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
    (("computer", "programming"), ("Computer Science", "Programming")),
    (("math",), ("Mathematics",)),
    (("science",), ("Science",)),
)

_PUBLIC_FIELDS = (
    "title",
    "author",
    "year",
    "format",
    "status",
    "categories",
    "tags",
)


@dataclass(frozen=True)
class UserProfile:
    top_categories: list[str]
    top_tags: list[str]
    top_authors: list[str]
    view_count: int
    search_count: int
    recent_interactions: int

    def based_on(self) -> dict[str, Any]:
        return {
            "viewCount": self.view_count,
            "searchCount": self.search_count,
            "topCategories": self.top_categories[:3],
            "topTags": self.top_tags[:3],
        }


EMPTY_BASED_ON = {"viewCount": 0, "searchCount": 0, "topCategories": [], "topTags": []}


def get_top_items(items: Iterable[str], n: int) -> list[str]:
    """Return the ``n`` most frequent items; ties keep first-seen order."""
    return [item for item, _count in Counter(items).most_common(n)]


def _as_aware(timestamp: dt.datetime) -> dt.datetime:
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=dt.UTC)
    return timestamp


def analyze_user_history(
    interactions: Sequence[dict[str, Any]],
    context: str,
    now: dt.datetime | None = None,
) -> UserProfile:
    """Build a weighted interest profile from interaction rows.

    Views from the last seven days count twice. Searches only feed the
    profile in the ``search`` context, through the keyword hints above.
    """
    cutoff = (now or dt.datetime.now(dt.UTC)) - RECENT_WINDOW
    categories: list[str] = []
    tags: list[str] = []
    authors: list[str] = []
    view_count = 0
    search_count = 0
    recent = 0

    for interaction in interactions:
        is_recent = _as_aware(interaction["timestamp"]) >= cutoff
        if is_recent:
            recent += 1
        weight = 2 if is_recent else 1
        event_type = interaction.get("event_type")
        if event_type == "view":
            view_count += 1
            categories.extend((interaction.get("book_categories") or []) * weight)
            tags.extend((interaction.get("book_tags") or []) * weight)
            if interaction.get("book_author"):
                authors.extend([interaction["book_author"]] * weight)
        elif event_type == "search":
            search_count += 1
            query = (interaction.get("search_query") or "").lower()
            if context == "search" and query:
                for keywords, implied in _SEARCH_HINTS:
                    if any(keyword in query for keyword in keywords):
                        categories.extend(implied)

    return UserProfile(
        top_categories=get_top_items(categories, 5),
        top_tags=get_top_items(tags, 5),
        top_authors=get_top_items(authors, 3),
        view_count=view_count,
        search_count=search_count,
        recent_interactions=recent,
    )


def _count_matches(values: Iterable[str], wanted: Sequence[str]) -> int:
    return sum(1 for value in values if value in wanted)


def calculate_relevance(book: dict[str, Any], profile: UserProfile) -> tuple[int, list[str]]:
    """Return ``(score, reasons)`` for one candidate; score is capped at 100."""
    score = 0.0
    reasons: list[str] = []
    categories = book.get("categories") or []
    popularity = book.get("popularity_score") or 0

    category_matches = _count_matches(categories, profile.top_categories)
    if category_matches:
        score += category_matches * 30
        reasons.append(f"Same category: {categories[0]}")

    tag_matches = _count_matches(book.get("tags") or [], profile.top_tags)
    if tag_matches:
        score += tag_matches * 20
        if len(reasons) < 2:
            reasons.append("Similar topics")

    if book.get("author") in profile.top_authors:
        score += 15
        if len(reasons) < 2:
            reasons.append("Author you've viewed")

    if profile.recent_interactions:
        score += min(profile.recent_interactions * 2, 10)

    if popularity:
        score += min(popularity * 0.25, 25)

    year = book.get("year")
    if year and year >= 2020:
        score += 5
        topical = any("category" in reason or "topics" in reason for reason in reasons)
        if len(reasons) < 2 and not topical:
            reasons.append("Recent publication")

    if popularity > 50 and len(reasons) < 2:
        reasons.append(POPULAR_REASON)

    # Half-up, so 20.5 clears the relevance threshold.
    return min(math.floor(score + 0.5), 100), reasons[:2]


def _public_book(book: dict[str, Any], score: int, reasons: list[str]) -> dict[str, Any]:
    payload: dict[str, Any] = {"_id": str(book["id"])}
    payload.update({field: book.get(field) for field in _PUBLIC_FIELDS})
    payload["coverImageUrl"] = book.get("cover_image_url")
    payload["relevanceScore"] = score
    payload["matchReasons"] = reasons
    return payload


def rank_books(
    candidates: Iterable[dict[str, Any]],
    profile: UserProfile,
    limit: int,
    min_score: int = MIN_RELEVANCE,
) -> list[dict[str, Any]]:
    """Score candidates, drop weak matches and return the best ``limit``."""
    scored = []
    for book in candidates:
        score, reasons = calculate_relevance(book, profile)
        if score > min_score:
            scored.append(_public_book(book, score, reasons))
    scored.sort(key=lambda item: item["relevanceScore"], reverse=True)
    return scored[:limit]


def popular_recommendations(books: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    return [_public_book(book, POPULAR_RELEVANCE, [POPULAR_REASON]) for book in books]
