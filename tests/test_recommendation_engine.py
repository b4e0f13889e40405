import datetime as dt
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from recommendation_engine import (
    UserProfile,
    analyze_user_history,
    calculate_relevance,
    get_top_items,
    popular_recommendations,
    rank_books,
)

NOW = dt.datetime(2026, 1, 10, 12, 0, tzinfo=dt.UTC)


def _view(categories, tags, author, days_ago):
    return {
        "event_type": "view",
        "book_categories": categories,
        "book_tags": tags,
        "book_author": author,
        "timestamp": NOW - dt.timedelta(days=days_ago),
    }


def _search(query, days_ago=1):
    return {"event_type": "search", "search_query": query, "timestamp": NOW - dt.timedelta(days=days_ago)}


def _profile(**overrides):
    values = {
        "top_categories": ["CS", "Math"],
        "top_tags": ["python", "algebra"],
        "top_authors": ["Guido"],
        "view_count": 2,
        "search_count": 0,
        "recent_interactions": 2,
    }
    values.update(overrides)
    return UserProfile(**values)


def _book(book_id, **fields):
    book = {
        "id": book_id,
        "title": f"Book {book_id}",
        "author": None,
        "year": 2010,
        "format": "paperback",
        "status": "available",
        "categories": [],
        "tags": [],
        "cover_image_url": None,
        "popularity_score": 0,
    }
    book.update(fields)
    return book


def test_get_top_items_orders_by_frequency():
    assert get_top_items(["a", "b", "a", "c", "b", "a"], 2) == ["a", "b"]
    assert get_top_items([], 3) == []


def test_recent_views_count_double():
    history = [
        _view(["Math"], ["algebra"], "Euler", days_ago=20),
        _view(["Math"], ["algebra"], "Euler", days_ago=21),
        _view(["CS"], ["python"], "Guido", days_ago=1),
        _view(["CS"], ["python"], "Guido", days_ago=2),
        _search("math books"),
    ]

    profile = analyze_user_history(history, "browse", now=NOW)

    assert profile.top_categories == ["CS", "Math"]
    assert profile.top_tags == ["python", "algebra"]
    assert profile.top_authors == ["Guido", "Euler"]
    assert profile.view_count == 4
    assert profile.search_count == 1
    assert profile.recent_interactions == 3


def test_search_hints_only_apply_in_search_context():
    history = [_search("Intro to Programming"), _search("applied math")]

    browse = analyze_user_history(history, "browse", now=NOW)
    search = analyze_user_history(history, "search", now=NOW)

    assert browse.top_categories == []
    assert search.top_categories == ["Computer Science", "Programming", "Mathematics"]
    assert search.search_count == 2


def test_naive_timestamps_are_treated_as_utc():
    naive = _view(["CS"], [], None, days_ago=1)
    naive["timestamp"] = naive["timestamp"].replace(tzinfo=None)

    profile = analyze_user_history([naive], "browse", now=NOW)

    assert profile.recent_interactions == 1
    assert profile.top_authors == []


def test_relevance_combines_matches_and_reasons():
    book = _book(1, categories=["CS"], tags=["python", "web"], author="Guido")

    score, reasons = calculate_relevance(book, _profile())

    assert score == 30 + 20 + 15 + 4
    assert reasons == ["Same category: CS", "Similar topics"]


def test_relevance_for_recent_popular_book_without_topic_match():
    book = _book(2, year=2021, popularity_score=100)

    score, reasons = calculate_relevance(book, _profile())

    assert score == 4 + 25 + 5
    assert reasons == ["Recent publication", "Popular with students"]


def test_relevance_is_capped_at_100():
    book = _book(3, categories=["CS", "Math"], tags=["python", "algebra"], author="Guido")

    score, reasons = calculate_relevance(book, _profile())

    assert score == 100
    assert len(reasons) == 2


def test_relevance_rounds_half_scores_up():
    profile = _profile(recent_interactions=0)

    even_half, _ = calculate_relevance(_book(4, categories=["CS"], popularity_score=2), profile)
    odd_half, _ = calculate_relevance(_book(5, categories=["CS"], popularity_score=6), profile)

    assert even_half == 31
    assert odd_half == 32


def test_rank_books_keeps_book_rounded_up_past_threshold():
    profile = _profile(recent_interactions=0)
    borderline = _book(6, tags=["python"], popularity_score=2)

    ranked = rank_books([borderline], profile, limit=5)

    assert [(item["_id"], item["relevanceScore"]) for item in ranked] == [("6", 21)]


def test_rank_books_filters_weak_matches_and_sorts():
    candidates = [
        _book(1, categories=["CS"]),
        _book(2, categories=["CS"], tags=["python"], author="Guido"),
        _book(3, categories=["History"]),
    ]

    ranked = rank_books(candidates, _profile(), limit=5)

    assert [item["_id"] for item in ranked] == ["2", "1"]
    assert ranked[0]["relevanceScore"] > ranked[1]["relevanceScore"]
    assert set(ranked[0]) == {
        "_id",
        "title",
        "author",
        "year",
        "format",
        "status",
        "categories",
        "tags",
        "coverImageUrl",
        "relevanceScore",
        "matchReasons",
    }


def test_rank_books_respects_limit():
    candidates = [_book(index, categories=["CS"]) for index in range(1, 6)]

    assert len(rank_books(candidates, _profile(), limit=2)) == 2


def test_popular_recommendations_use_fixed_score():
    items = popular_recommendations([_book(7, cover_image_url="http://img/7.png")])

    assert items == [
        {
            "_id": "7",
            "title": "Book 7",
            "author": None,
            "year": 2010,
            "format": "paperback",
            "status": "available",
            "categories": [],
            "tags": [],
            "coverImageUrl": "http://img/7.png",
            "relevanceScore": 50,
            "matchReasons": ["Popular with students"],
        }
    ]
