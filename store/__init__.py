"""Interaction store exports."""

from .base import connect_db
from .interactions import (
    add_book,
    add_library_entry,
    candidate_books,
    ensure_schema,
    find_book,
    increment_popularity,
    library_entries,
    popular_books,
    recent_interactions,
    record_interaction,
)

__all__ = [
    "add_book",
    "add_library_entry",
    "candidate_books",
    "connect_db",
    "ensure_schema",
    "find_book",
    "increment_popularity",
    "library_entries",
    "popular_books",
    "recent_interactions",
    "record_interaction",
]
