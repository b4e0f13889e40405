"""Books, user interactions and personal library entries.

Every helper opens its own connection through :func:`connect_db`, so callers
only pass ``db_path`` when they want something other than ``DB_URL`` /
``DB_PATH``. List and mapping columns are stored as JSON text.
"""

from __future__ import annotations

import datetime as dt
import json
from collections.abc import Iterable
from typing import Any

from .base import connect_db, fetch_dicts, is_sqlite, placeholder

BOOK_COLUMNS = (
    "id",
    "slug",
    "isbn",
    "title",
    "author",
    "year",
    "format",
    "status",
    "categories",
    "tags",
    "cover_image_url",
    "popularity_score",
)
_JSON_LIST_COLUMNS = ("categories", "tags", "book_categories", "book_tags")

_SQLITE_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS books ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, slug TEXT, isbn TEXT, title TEXT NOT NULL, "
    "author TEXT, year INTEGER, format TEXT, status TEXT NOT NULL DEFAULT 'available', "
    "categories TEXT NOT NULL DEFAULT '[]', tags TEXT NOT NULL DEFAULT '[]', "
    "cover_image_url TEXT, popularity_score INTEGER NOT NULL DEFAULT 0)",
    "CREATE TABLE IF NOT EXISTS user_interactions ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, user_email TEXT NOT NULL, "
    "event_type TEXT NOT NULL, book_id INTEGER, book_title TEXT, book_author TEXT, "
    "book_categories TEXT, book_tags TEXT, search_query TEXT, search_filters TEXT, "
    "timestamp TEXT NOT NULL, expires_at TEXT NOT NULL)",
    "CREATE TABLE IF NOT EXISTS personal_libraries ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, user_email TEXT NOT NULL, isbn TEXT, title TEXT)",
)
_POSTGRES_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS books ("
    "id bigserial PRIMARY KEY, slug text, isbn text, title text NOT NULL, "
    "author text, year integer, format text, status text NOT NULL DEFAULT 'available', "
    "categories text NOT NULL DEFAULT '[]', tags text NOT NULL DEFAULT '[]', "
    "cover_image_url text, popularity_score integer NOT NULL DEFAULT 0)",
    "CREATE TABLE IF NOT EXISTS user_interactions ("
    "id bigserial PRIMARY KEY, user_email text NOT NULL, "
    "event_type text NOT NULL, book_id bigint, book_title text, book_author text, "
    "book_categories text, book_tags text, search_query text, search_filters text, "
    "timestamp text NOT NULL, expires_at text NOT NULL)",
    "CREATE TABLE IF NOT EXISTS personal_libraries ("
    "id bigserial PRIMARY KEY, user_email text NOT NULL, isbn text, title text)",
)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def ensure_schema(conn) -> None:
    """Create the store tables if they do not exist."""
    for statement in _SQLITE_SCHEMA if is_sqlite(conn) else _POSTGRES_SCHEMA:
        conn.execute(statement)


def _decode(row: dict[str, Any]) -> dict[str, Any]:
    for column in _JSON_LIST_COLUMNS:
        if column in row:
            row[column] = json.loads(row[column]) if row[column] else []
    if "search_filters" in row:
        row["search_filters"] = json.loads(row["search_filters"]) if row["search_filters"] else {}
    return row


def _insert(conn, table: str, values: dict[str, Any]) -> int:
    marker = placeholder(conn)
    columns = ", ".join(values)
    markers = ", ".join([marker] * len(values))
    sql = f"INSERT INTO {table} ({columns}) VALUES ({markers})"
    if is_sqlite(conn):
        cursor = conn.execute(sql, tuple(values.values()))
        return int(cursor.lastrowid)
    cursor = conn.execute(f"{sql} RETURNING id", tuple(values.values()))
    return int(cursor.fetchone()[0])


def add_book(book: dict[str, Any], db_path: str | None = None) -> int:
    """Insert a catalog record and return its id."""
    values = {
        "slug": book.get("slug"),
        "isbn": book.get("isbn"),
        "title": book["title"],
        "author": book.get("author"),
        "year": book.get("year"),
        "format": book.get("format"),
        "status": book.get("status", "available"),
        "categories": json.dumps(list(book.get("categories") or [])),
        "tags": json.dumps(list(book.get("tags") or [])),
        "cover_image_url": book.get("cover_image_url"),
        "popularity_score": int(book.get("popularity_score") or 0),
    }
    conn = connect_db(db_path)
    try:
        ensure_schema(conn)
        book_id = _insert(conn, "books", values)
        conn.commit()
    finally:
        conn.close()
    return book_id


def find_book(book_ref: str | int, db_path: str | None = None) -> dict[str, Any] | None:
    """Look a book up by numeric id, falling back to its slug."""
    ref = str(book_ref).strip()
    if not ref:
        return None
    conn = connect_db(db_path)
    try:
        ensure_schema(conn)
        marker = placeholder(conn)
        select = f"SELECT {', '.join(BOOK_COLUMNS)} FROM books"
        rows: list[dict[str, Any]] = []
        if ref.isdigit():
            rows = fetch_dicts(conn.execute(f"{select} WHERE id = {marker}", (int(ref),)))
        if not rows:
            rows = fetch_dicts(conn.execute(f"{select} WHERE slug = {marker}", (ref,)))
    finally:
        conn.close()
    return _decode(rows[0]) if rows else None


def increment_popularity(book_id: int, db_path: str | None = None) -> None:
    conn = connect_db(db_path)
    try:
        ensure_schema(conn)
        marker = placeholder(conn)
        conn.execute(
            f"UPDATE books SET popularity_score = popularity_score + 1 WHERE id = {marker}",
            (book_id,),
        )
        conn.commit()
    finally:
        conn.close()


def record_interaction(
    user_email: str,
    event_type: str,
    *,
    book: dict[str, Any] | None = None,
    search_query: str | None = None,
    search_filters: dict[str, Any] | None = None,
    retention_days: int = 90,
    now: dt.datetime | None = None,
    db_path: str | None = None,
) -> int:
    """Persist one interaction with the book details denormalized onto it."""
    timestamp = now or _utcnow()
    values: dict[str, Any] = {
        "user_email": user_email,
        "event_type": event_type,
        "book_id": None,
        "book_title": None,
        "book_author": None,
        "book_categories": None,
        "book_tags": None,
        "search_query": search_query,
        "search_filters": json.dumps(search_filters) if search_filters is not None else None,
        "timestamp": timestamp.isoformat(),
        "expires_at": (timestamp + dt.timedelta(days=retention_days)).isoformat(),
    }
    if book is not None:
        values.update(
            book_id=book["id"],
            book_title=book.get("title"),
            book_author=book.get("author"),
            book_categories=json.dumps(book.get("categories") or []),
            book_tags=json.dumps(book.get("tags") or []),
        )
    conn = connect_db(db_path)
    try:
        ensure_schema(conn)
        interaction_id = _insert(conn, "user_interactions", values)
        conn.commit()
    finally:
        conn.close()
    return interaction_id


def recent_interactions(
    user_email: str,
    since: dt.datetime,
    db_path: str | None = None,
) -> list[dict[str, Any]]:
    """Return the user's interactions newer than ``since``, newest first."""
    conn = connect_db(db_path)
    try:
        ensure_schema(conn)
        marker = placeholder(conn)
        cursor = conn.execute(
            "SELECT id, user_email, event_type, book_id, book_title, book_author, "
            "book_categories, book_tags, search_query, search_filters, timestamp "
            f"FROM user_interactions WHERE user_email = {marker} AND timestamp >= {marker} "
            "ORDER BY timestamp DESC, id DESC",
            (user_email, since.isoformat()),
        )
        rows = fetch_dicts(cursor)
    finally:
        conn.close()
    for row in rows:
        _decode(row)
        row["timestamp"] = dt.datetime.fromisoformat(row["timestamp"])
    return rows


def add_library_entry(
    user_email: str,
    *,
    isbn: str | None = None,
    title: str | None = None,
    db_path: str | None = None,
) -> int:
    conn = connect_db(db_path)
    try:
        ensure_schema(conn)
        entry_id = _insert(
            conn,
            "personal_libraries",
            {"user_email": user_email, "isbn": isbn, "title": title},
        )
        conn.commit()
    finally:
        conn.close()
    return entry_id


def library_entries(user_email: str, db_path: str | None = None) -> list[dict[str, Any]]:
    conn = connect_db(db_path)
    try:
        ensure_schema(conn)
        marker = placeholder(conn)
        cursor = conn.execute(
            f"SELECT isbn, title FROM personal_libraries WHERE user_email = {marker}",
            (user_email,),
        )
        rows = fetch_dicts(cursor)
    finally:
        conn.close()
    return rows


def _available_books(conn) -> list[dict[str, Any]]:
    marker = placeholder(conn)
    cursor = conn.execute(
        f"SELECT {', '.join(BOOK_COLUMNS)} FROM books WHERE status = {marker} ORDER BY id",
        ("available",),
    )
    return [_decode(row) for row in fetch_dicts(cursor)]


def candidate_books(
    *,
    categories: Iterable[str],
    tags: Iterable[str],
    authors: Iterable[str],
    limit: int,
    exclude_isbns: Iterable[str] = (),
    exclude_titles: Iterable[str] = (),
    exclude_book_id: int | None = None,
    db_path: str | None = None,
) -> list[dict[str, Any]]:
    """Return up to ``limit`` available books sharing a category, tag or author."""
    wanted_categories = set(categories)
    wanted_tags = set(tags)
    wanted_authors = set(authors)
    skip_isbns = set(exclude_isbns)
    skip_titles = set(exclude_titles)
    conn = connect_db(db_path)
    try:
        ensure_schema(conn)
        books = _available_books(conn)
    finally:
        conn.close()
    matches: list[dict[str, Any]] = []
    for book in books:
        if exclude_book_id is not None and book["id"] == exclude_book_id:
            continue
        if book.get("isbn") in skip_isbns or book.get("title") in skip_titles:
            continue
        if (
            wanted_categories.intersection(book["categories"])
            or wanted_tags.intersection(book["tags"])
            or book.get("author") in wanted_authors
        ):
            matches.append(book)
            if len(matches) >= limit:
                break
    return matches


def popular_books(limit: int, db_path: str | None = None) -> list[dict[str, Any]]:
    """Return available books by popularity, newest publication first on ties."""
    conn = connect_db(db_path)
    try:
        ensure_schema(conn)
        marker = placeholder(conn)
        cursor = conn.execute(
            f"SELECT {', '.join(BOOK_COLUMNS)} FROM books WHERE status = {marker} "
            f"ORDER BY popularity_score DESC, year DESC, id LIMIT {marker}",
            ("available", limit),
        )
        rows = [_decode(row) for row in fetch_dicts(cursor)]
    finally:
        conn.close()
    return rows
