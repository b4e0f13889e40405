import datetime as dt
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from api.cache import get_cache_stats
from api.recommendations import POPULAR_BOOKS_NAMESPACE, _popular_books
from store import add_book, find_book, recent_interactions
from utils.settings import Settings

EMAIL = "student@example.edu"
SINCE = dt.datetime(2000, 1, 1, tzinfo=dt.UTC)


@pytest.fixture
def client():
    app = create_app(Settings(tracking_max_requests=5, recommendations_max_requests=5))
    return TestClient(app, headers={"X-User-Email": EMAIL})


@pytest.fixture
def book_id():
    return add_book(
        {
            "title": "Clean Code",
            "slug": "clean-code",
            "isbn": "9780132350884",
            "author": "Robert Martin",
            "year": 2008,
            "categories": ["Programming"],
            "tags": ["craft"],
        }
    )


def test_track_requires_identity(client):
    resp = client.post("/api/student/books/track", json={"eventType": "view"}, headers={"X-User-Email": " "})
    assert resp.status_code == 401
    assert resp.json() == {"ok": False, "error": "Unauthorized"}


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"eventType": "rate"}, "Invalid event type. Must be 'view', 'search', or 'bookmark'"),
        ({}, "Invalid event type. Must be 'view', 'search', or 'bookmark'"),
        ({"eventType": "view"}, "bookId is required for view and bookmark events"),
        ({"eventType": "bookmark", "bookId": "  "}, "bookId is required for view and bookmark events"),
        ({"eventType": "search", "searchQuery": " "}, "searchQuery is required for search events"),
        (
            {"eventType": "search", "searchQuery": "sql", "searchFilters": ["pdf"]},
            "searchFilters must be an object",
        ),
    ],
)
def test_track_validation_errors(client, payload, message):
    resp = client.post("/api/student/books/track", json=payload)
    assert resp.status_code == 400
    assert resp.json() == {"ok": False, "error": message}


def test_track_unknown_book_is_404(client):
    resp = client.post("/api/student/books/track", json={"eventType": "view", "bookId": "999"})
    assert resp.status_code == 404
    assert resp.json()["error"] == "Book not found"


def test_track_view_stores_book_details_and_bumps_popularity(client, book_id):
    resp = client.post(
        "/api/student/books/track",
        json={"eventType": "view", "bookId": str(book_id), "timestamp": "2026-01-01T00:00:00Z"},
    )

    body = resp.json()
    assert resp.status_code == 200
    assert body["ok"] is True
    assert body["interactionId"].isdigit()

    [interaction] = recent_interactions(EMAIL, SINCE)
    assert interaction["event_type"] == "view"
    assert interaction["book_id"] == book_id
    assert interaction["book_title"] == "Clean Code"
    assert interaction["book_categories"] == ["Programming"]
    assert interaction["book_tags"] == ["craft"]
    assert find_book(book_id)["popularity_score"] == 1


def test_track_view_invalidates_popular_books_cache(client, book_id):
    _popular_books(5)
    _popular_books(5)
    assert get_cache_stats(POPULAR_BOOKS_NAMESPACE)["hits"] == 1

    client.post("/api/student/books/track", json={"eventType": "view", "bookId": str(book_id)})
    [book] = _popular_books(5)

    assert book["popularity_score"] == 1
    assert get_cache_stats(POPULAR_BOOKS_NAMESPACE)["misses"] == 2


def test_track_search_trims_query_and_keeps_filters(client):
    resp = client.post(
        "/api/student/books/track",
        json={"eventType": "search", "searchQuery": "  databases ", "searchFilters": {"format": "pdf"}},
    )

    assert resp.status_code == 200
    [interaction] = recent_interactions(EMAIL, SINCE)
    assert interaction["search_query"] == "databases"
    assert interaction["search_filters"] == {"format": "pdf"}
    assert interaction["book_id"] is None


def test_track_bookmark_does_not_change_popularity(client, book_id):
    resp = client.post("/api/student/books/track", json={"eventType": "bookmark", "bookId": book_id})

    assert resp.status_code == 200
    [interaction] = recent_interactions(EMAIL, SINCE)
    assert interaction["event_type"] == "bookmark"
    assert find_book(book_id)["popularity_score"] == 0


def test_interaction_timestamp_is_set_by_server(client, book_id):
    client.post("/api/student/books/track", json={"eventType": "view", "bookId": str(book_id)})

    [interaction] = recent_interactions(EMAIL, SINCE)
    assert interaction["timestamp"] > dt.datetime.now(dt.UTC) - dt.timedelta(minutes=1)


def test_track_rate_limit_returns_429_with_headers(client):
    for _ in range(5):
        resp = client.post("/api/student/books/track", json={"eventType": "search", "searchQuery": "x"})
        assert resp.status_code == 200

    resp = client.post("/api/student/books/track", json={"eventType": "search", "searchQuery": "x"})

    assert resp.status_code == 429
    body = resp.json()
    assert body["ok"] is False
    assert body["error"] == "Rate limit exceeded"
    assert 0 < body["retryAfter"] <= 60
    assert resp.headers["X-RateLimit-Limit"] == "5"
    assert resp.headers["X-RateLimit-Remaining"] == "0"
    assert resp.headers["Retry-After"] == str(body["retryAfter"])
    dt.datetime.fromisoformat(resp.headers["X-RateLimit-Reset"])


def test_rate_limit_is_per_student(client):
    for _ in range(6):
        client.post("/api/student/books/track", json={"eventType": "search", "searchQuery": "x"})

    resp = client.post(
        "/api/student/books/track",
        json={"eventType": "search", "searchQuery": "x"},
        headers={"X-User-Email": "other@example.edu"},
    )
    assert resp.status_code == 200


def test_rejected_requests_do_not_extend_the_window(client):
    gate = client.app.state.rate_limits
    for _ in range(8):
        client.post("/api/student/books/track", json={"eventType": "search", "searchQuery": "x"})

    assert gate.get_limiter("tracking").get_usage(EMAIL).used == 5


def test_track_view_by_slug(client, book_id):
    resp = client.post("/api/student/books/clean-code/track-view")

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    assert find_book(book_id)["popularity_score"] == 1


def test_track_view_unknown_slug_is_404(client):
    resp = client.post("/api/student/books/no-such-book/track-view")
    assert resp.status_code == 404


def test_track_view_requires_identity(client, book_id):
    resp = client.post(f"/api/student/books/{book_id}/track-view", headers={"X-User-Email": ""})
    assert resp.status_code == 401


def test_store_failure_returns_500(client, monkeypatch):
    from api import tracking

    def _broken(*_args, **_kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(tracking, "record_interaction", _broken)
    resp = client.post("/api/student/books/track", json={"eventType": "search", "searchQuery": "x"})

    assert resp.status_code == 500
    assert resp.json() == {"ok": False, "error": "database is locked"}
