import datetime as dt
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from api.cache import get_cache_stats
from api.recommendations import POPULAR_BOOKS_NAMESPACE
from store import add_book, add_library_entry, find_book, record_interaction
from utils.settings import Settings

EMAIL = "student@example.edu"
URL = "/api/student/books/recommendations"


@pytest.fixture
def client():
    app = create_app(Settings(recommendations_max_requests=5, max_recommendations=20))
    return TestClient(app, headers={"X-User-Email": EMAIL})


@pytest.fixture
def catalog():
    return {
        "sicp": add_book(
            {
                "title": "Structure and Interpretation of Computer Programs",
                "isbn": "0262510871",
                "author": "Harold Abelson",
                "year": 1996,
                "categories": ["Computer Science"],
                "tags": ["lisp"],
            }
        ),
        "htdp": add_book(
            {
                "title": "How to Design Programs",
                "isbn": "0262534800",
                "author": "Matthias Felleisen",
                "year": 2018,
                "categories": ["Computer Science"],
                "tags": ["racket"],
            }
        ),
        "owned": add_book(
            {
                "title": "The Little Schemer",
                "isbn": "0262560992",
                "author": "Daniel Friedman",
                "year": 1995,
                "categories": ["Computer Science"],
                "tags": ["lisp"],
            }
        ),
        "calculus": add_book(
            {
                "title": "Calculus",
                "isbn": "0914098918",
                "author": "Michael Spivak",
                "year": 2008,
                "categories": ["Mathematics"],
                "popularity_score": 40,
            }
        ),
        "lent": add_book(
            {
                "title": "Lisp in Small Pieces",
                "author": "Christian Queinnec",
                "year": 2003,
                "status": "checked-out",
                "categories": ["Computer Science"],
                "tags": ["lisp"],
            }
        ),
    }


def _view(book_id, days_ago=1):
    record_interaction(
        EMAIL,
        "view",
        book=find_book(book_id),
        now=dt.datetime.now(dt.UTC) - dt.timedelta(days=days_ago),
    )


def test_recommendations_require_identity(client):
    resp = client.get(URL, headers={"X-User-Email": ""})
    assert resp.status_code == 401


def test_no_history_falls_back_to_popular_books(client, catalog):
    resp = client.get(URL)

    body = resp.json()
    assert resp.status_code == 200
    assert body["ok"] is True
    assert body["basedOn"] == {"viewCount": 0, "searchCount": 0, "topCategories": [], "topTags": []}
    ids = [item["_id"] for item in body["recommendations"]]
    assert ids[0] == str(catalog["calculus"])
    assert str(catalog["lent"]) not in ids
    assert all(item["relevanceScore"] == 50 for item in body["recommendations"])
    assert all(item["matchReasons"] == ["Popular with students"] for item in body["recommendations"])


def test_personalized_recommendations_skip_owned_books(client, catalog):
    _view(catalog["sicp"])
    add_library_entry(EMAIL, isbn="0262560992", title="The Little Schemer")

    body = client.get(URL, params={"limit": "5"}).json()

    ids = [item["_id"] for item in body["recommendations"]]
    assert ids == [str(catalog["sicp"]), str(catalog["htdp"])]
    assert body["recommendations"][0]["matchReasons"] == [
        "Same category: Computer Science",
        "Similar topics",
    ]
    assert body["basedOn"] == {
        "viewCount": 1,
        "searchCount": 0,
        "topCategories": ["Computer Science"],
        "topTags": ["lisp"],
    }


def test_current_book_is_excluded(client, catalog):
    _view(catalog["sicp"])

    body = client.get(URL, params={"currentBookId": str(catalog["sicp"])}).json()

    ids = [item["_id"] for item in body["recommendations"]]
    assert str(catalog["sicp"]) not in ids
    assert str(catalog["htdp"]) in ids


def test_history_without_matches_falls_back_to_popular(client, catalog):
    record_interaction(EMAIL, "search", search_query="poetry", search_filters={})

    body = client.get(URL).json()

    assert body["recommendations"][0]["relevanceScore"] == 50
    assert body["basedOn"]["viewCount"] == 0


def test_interactions_older_than_retention_are_ignored(client, catalog):
    _view(catalog["sicp"], days_ago=120)

    body = client.get(URL).json()

    assert body["basedOn"]["viewCount"] == 0


@pytest.mark.parametrize("raw, expected", [("0", 1), ("-4", 1), ("2", 2), ("100", 4)])
def test_limit_is_clamped(client, catalog, raw, expected):
    body = client.get(URL, params={"limit": raw}).json()
    assert len(body["recommendations"]) == expected


def test_non_integer_limit_is_rejected(client):
    resp = client.get(URL, params={"limit": "ten"})
    assert resp.status_code == 400
    assert resp.json() == {"ok": False, "error": "limit must be an integer"}


def test_recommendations_rate_limit(client):
    for _ in range(5):
        assert client.get(URL).status_code == 200

    resp = client.get(URL)

    assert resp.status_code == 429
    assert resp.headers["X-RateLimit-Limit"] == "5"
    assert resp.json()["error"] == "Rate limit exceeded"


def test_popular_fallback_is_cached_until_a_view(client, catalog):
    client.get(URL, params={"limit": "3"})
    client.get(URL, params={"limit": "3"})
    assert get_cache_stats(POPULAR_BOOKS_NAMESPACE) == {"hits": 1, "misses": 1, "hit_ratio": 0.5}

    client.post(
        "/api/student/books/track",
        json={"eventType": "view", "bookId": str(catalog["htdp"])},
        headers={"X-User-Email": "someone@example.edu"},
    )
    client.get(URL, params={"limit": "3"})

    assert get_cache_stats(POPULAR_BOOKS_NAMESPACE)["misses"] == 2


def test_engine_failure_returns_500(client, monkeypatch):
    from api import recommendations

    def _broken(*_args, **_kwargs):
        raise RuntimeError("store offline")

    monkeypatch.setattr(recommendations, "recent_interactions", _broken)
    resp = client.get(URL)

    assert resp.status_code == 500
    assert resp.json() == {"ok": False, "error": "store offline"}
