"""Shared fixtures: every test gets its own SQLite file and a fresh query cache."""

import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from api import cache as cache_module


@pytest.fixture(autouse=True)
def _isolated_store(tmp_path, monkeypatch):
    monkeypatch.setenv("DB_PATH", str(tmp_path / "dev.db"))
    monkeypatch.delenv("DB_URL", raising=False)
    monkeypatch.delenv("REDIS_URL", raising=False)
    cache_module.reset_cache_backend()
    cache_module.reset_cache_stats()
    yield
    cache_module.reset_cache_backend()


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "dev.db")
