"""Server-side query cache for catalog reads, backed by Redis or a TTLCache.

Used for the popular-books fallback, which every student without history
hits. Views bump popularity, so the tracking endpoint invalidates the
namespace prefix on each recorded view.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from threading import Lock
from typing import Any

from cachetools import TTLCache  # type: ignore[import-untyped]
from prometheus_client import Counter, Gauge

logger = logging.getLogger(__name__)

CACHE_HITS = Counter("cache_hits_total", "Query cache hits by namespace.", ("namespace",))
CACHE_MISSES = Counter("cache_misses_total", "Query cache misses by namespace.", ("namespace",))
CACHE_HIT_RATIO = Gauge("cache_hit_ratio", "Query cache hit ratio by namespace.", ("namespace",))

_BACKEND_LOCK = Lock()
_BACKEND: _CacheBackend | None = None
_STATS_LOCK = Lock()
_STATS: dict[str, dict[str, int]] = {}


def _cache_ttl_seconds() -> int:
    return max(int(os.getenv("CACHE_TTL_SECONDS", "60")), 1)


def _cache_max_items() -> int:
    return max(int(os.getenv("CACHE_MAX_ITEMS", "512")), 1)


def _build_redis_client(redis_url: str):
    # Imported lazily so Redis stays optional for local runs.
    import redis

    return redis.Redis.from_url(redis_url)


@dataclass(frozen=True)
class _CacheBackend:
    name: str
    get: Callable[[str], Any]
    set: Callable[[str, str, int], None]
    delete_prefix: Callable[[str], None]


def _redis_backend(client) -> _CacheBackend:
    def _delete_prefix(prefix: str) -> None:
        keys = list(client.scan_iter(f"{prefix}*"))
        if keys:
            client.delete(*keys)

    return _CacheBackend(
        name="redis",
        get=client.get,
        set=lambda key, payload, ttl: client.setex(key, ttl, payload),
        delete_prefix=_delete_prefix,
    )


def _memory_backend() -> _CacheBackend:
    # The TTL is fixed at construction; per-call ttl only applies to Redis.
    cache: TTLCache = TTLCache(maxsize=_cache_max_items(), ttl=_cache_ttl_seconds())
    lock = Lock()

    def _get(key: str) -> Any:
        with lock:
            return cache.get(key)

    def _set(key: str, payload: str, _ttl: int) -> None:
        with lock:
            cache[key] = payload

    def _delete_prefix(prefix: str) -> None:
        with lock:
            for key in [key for key in cache.keys() if str(key).startswith(prefix)]:
                cache.pop(key, None)

    return _CacheBackend(name="memory", get=_get, set=_set, delete_prefix=_delete_prefix)


def _get_backend() -> _CacheBackend:
    global _BACKEND
    with _BACKEND_LOCK:
        if _BACKEND is not None:
            return _BACKEND
        redis_url = os.getenv("REDIS_URL")
        if redis_url:
            try:
                _BACKEND = _redis_backend(_build_redis_client(redis_url))
            except Exception:
                logger.warning("Redis unavailable at %s, using in-memory cache", redis_url)
        if _BACKEND is None:
            _BACKEND = _memory_backend()
        return _BACKEND


def reset_cache_backend() -> None:
    """Drop the configured backend (useful for tests)."""
    global _BACKEND
    with _BACKEND_LOCK:
        _BACKEND = None


def reset_cache_stats() -> None:
    with _STATS_LOCK:
        _STATS.clear()


def _make_cache_key(namespace: str, args: tuple[Any, ...], kwargs: dict[str, Any]) -> str:
    raw = json.dumps({"args": args, "kwargs": kwargs}, sort_keys=True, default=str)
    return f"{namespace}:{hashlib.sha256(raw.encode('utf-8')).hexdigest()}"


def _record_lookup(namespace: str, hit: bool) -> None:
    with _STATS_LOCK:
        stats = _STATS.setdefault(namespace, {"hits": 0, "misses": 0})
        if hit:
            stats["hits"] += 1
            CACHE_HITS.labels(namespace=namespace).inc()
        else:
            stats["misses"] += 1
            CACHE_MISSES.labels(namespace=namespace).inc()
        CACHE_HIT_RATIO.labels(namespace=namespace).set(
            stats["hits"] / (stats["hits"] + stats["misses"])
        )


def get_cache_stats(namespace: str) -> dict[str, int | float]:
    """Return hit/miss counts and ratio for a namespace."""
    with _STATS_LOCK:
        stats = _STATS.get(namespace, {"hits": 0, "misses": 0}).copy()
    total = stats["hits"] + stats["misses"]
    return {
        "hits": stats["hits"],
        "misses": stats["misses"],
        "hit_ratio": (stats["hits"] / total) if total else 0.0,
    }


def cache_get(namespace: str, key: str) -> Any | None:
    payload = _get_backend().get(key)
    if payload is None:
        _record_lookup(namespace, hit=False)
        return None
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    _record_lookup(namespace, hit=True)
    return json.loads(payload)


def cache_set(key: str, value: Any, *, ttl: int | None = None) -> None:
    _get_backend().set(key, json.dumps(value, default=str), ttl or _cache_ttl_seconds())


def invalidate_cache_prefix(prefix: str) -> None:
    _get_backend().delete_prefix(prefix)


def cache_query(
    namespace: str,
    *,
    ttl: int | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Cache JSON-serializable results of a read-only query function."""

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            key = _make_cache_key(namespace, args, kwargs)
            cached = cache_get(namespace, key)
            if cached is not None:
                return cached
            result = func(*args, **kwargs)
            if result is not None:
                cache_set(key, result, ttl=ttl)
            return result

        return wrapper

    return decorator
