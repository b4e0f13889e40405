"""Connection helpers shared by the interaction store."""

from __future__ import annotations

import os
import sqlite3
from typing import Any

try:
    import psycopg
except ImportError:  # pragma: no cover - optional dependency
    psycopg = None


def connect_db(db_path: str | None = None, *, connect_timeout: float | None = None):
    """Return a database connection to SQLite or Postgres."""
    url = os.getenv("DB_URL")
    if url and psycopg and url.startswith("postgres"):
        connect_kwargs: dict[str, Any] = {"autocommit": True}
        if connect_timeout is not None:
            connect_kwargs["connect_timeout"] = connect_timeout
        return psycopg.connect(url, **connect_kwargs)
    path = db_path or os.getenv("DB_PATH", "dev.db")
    return sqlite3.connect(str(path))


def is_sqlite(conn) -> bool:
    return isinstance(conn, sqlite3.Connection)


def placeholder(conn) -> str:
    """Return the DB-API parameter marker for ``conn``."""
    return "?" if is_sqlite(conn) else "%s"


def fetch_dicts(cursor) -> list[dict[str, Any]]:
    """Materialize cursor rows as dicts keyed by column name."""
    columns = [column[0] for column in cursor.description or ()]
    return [dict(zip(columns, row, strict=True)) for row in cursor.fetchall()]
