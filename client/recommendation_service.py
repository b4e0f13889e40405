"""Client-side cache in front of the recommendations endpoint.

Entries are keyed by ``<context>_<limit>`` and considered fresh for ``ttl_s``
seconds. A fresh hit is served immediately while a forced refresh is queued in
the background, so the next read reflects recent interactions. When a fetch
fails the last known payload is served regardless of its age.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import httpx
from prometheus_client import Counter

from client.scheduler import Scheduler, TaskHandle

logger = logging.getLogger(__name__)

CACHE_LOOKUPS = Counter(
    "recommendation_cache_lookups_total",
    "Client recommendation cache lookups by result.",
    ("result",),
)


class RecommendationsUnavailable(RuntimeError):
    """The recommendations endpoint did not return a usable payload."""


@dataclass(frozen=True)
class RecommendationCacheConfig:
    endpoint: str = "/api/student/books/recommendations"
    ttl_s: float = 30.0
    refresh_delay_s: float = 0.1
    cleanup_interval_s: float = 600.0


@dataclass(frozen=True)
class CacheEntry:
    data: dict[str, Any]
    timestamp: float


def cache_key(context: str, limit: int) -> str:
    return f"{context}_{limit}"


class RecommendationService:
    def __init__(
        self,
        client: httpx.AsyncClient,
        scheduler: Scheduler,
        config: RecommendationCacheConfig | None = None,
    ) -> None:
        self._client = client
        self._scheduler = scheduler
        self._config = config or RecommendationCacheConfig()
        self._cache: dict[str, CacheEntry] = {}
        self._cleanup_timer: TaskHandle | None = None

    def __len__(self) -> int:
        return len(self._cache)

    def start(self) -> None:
        """Schedule the periodic sweep of expired entries."""
        if self._cleanup_timer is None:
            self._cleanup_timer = self._scheduler.call_every(
                self._config.cleanup_interval_s, self.cleanup
            )

    def stop(self) -> None:
        if self._cleanup_timer is not None:
            self._cleanup_timer.cancel()
            self._cleanup_timer = None

    def _is_fresh(self, entry: CacheEntry | None) -> bool:
        if entry is None:
            return False
        return self._scheduler.now() - entry.timestamp < self._config.ttl_s

    async def get_recommendations(
        self,
        context: str = "browse",
        limit: int = 10,
        force_refresh: bool = False,
    ) -> dict[str, Any]:
        """Return recommendations, preferring a fresh cached copy.

        Raises :class:`RecommendationsUnavailable` or :class:`httpx.HTTPError`
        only when the fetch fails and nothing was ever cached for the key.
        """
        key = cache_key(context, limit)
        if not force_refresh:
            cached = self._cache.get(key)
            if self._is_fresh(cached):
                CACHE_LOOKUPS.labels(result="hit").inc()
                self._scheduler.call_later(
                    self._config.refresh_delay_s, self._refresh, context, limit
                )
                return {**cached.data, "fromCache": True}

        CACHE_LOOKUPS.labels(result="miss").inc()
        try:
            data = await self._fetch(context, limit)
        except (httpx.HTTPError, RecommendationsUnavailable) as exc:
            cached = self._cache.get(key)
            if cached is None:
                raise
            logger.warning("Using stale cache due to fetch error: %s", exc)
            CACHE_LOOKUPS.labels(result="stale").inc()
            return {**cached.data, "fromCache": True, "stale": True}

        self._cache[key] = CacheEntry(data=data, timestamp=self._scheduler.now())
        return {**data, "fromCache": False}

    async def _fetch(self, context: str, limit: int) -> dict[str, Any]:
        response = await self._client.get(
            self._config.endpoint,
            params={"limit": str(limit), "context": context},
            headers={"Cache-Control": "no-store"},
        )
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if not response.is_success or data.get("ok") is not True:
            raise RecommendationsUnavailable(
                data.get("error") or "Failed to load recommendations"
            )
        return data

    async def _refresh(self, context: str, limit: int) -> None:
        try:
            await self.get_recommendations(context, limit, force_refresh=True)
        except (httpx.HTTPError, RecommendationsUnavailable) as exc:
            logger.error("Background refresh failed: %s", exc)

    def get_cached_recommendations(
        self, context: str = "browse", limit: int = 10
    ) -> dict[str, Any] | None:
        """Return a fresh cached payload without touching the network."""
        cached = self._cache.get(cache_key(context, limit))
        if self._is_fresh(cached):
            return {**cached.data, "fromCache": True}
        return None

    def invalidate_cache(self, context: str | None = None) -> None:
        """Drop entries for one context (by key prefix), or everything."""
        if not context:
            self._cache.clear()
            return
        for key in [key for key in self._cache if key.startswith(context)]:
            del self._cache[key]

    async def preload(self, contexts: Iterable[str] = ("browse", "search"), limit: int = 10) -> None:
        """Warm the cache for several contexts; failures are only logged."""
        contexts = list(contexts)
        results = await asyncio.gather(
            *(self.get_recommendations(context, limit) for context in contexts),
            return_exceptions=True,
        )
        for context, result in zip(contexts, results, strict=True):
            if isinstance(result, Exception):
                logger.error("Preload failed for %s: %s", context, result)

    def cleanup(self) -> int:
        """Remove expired entries; returns how many were dropped."""
        now = self._scheduler.now()
        expired = [
            key for key, entry in self._cache.items() if now - entry.timestamp > self._config.ttl_s
        ]
        for key in expired:
            del self._cache[key]
        return len(expired)
