"""Per-session bundle of the tracker and recommendation cache."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from api.handler import USER_HEADER
from client.behavior_tracker import BehaviorTracker, TrackerConfig
from client.recommendation_service import RecommendationCacheConfig, RecommendationService
from client.scheduler import AsyncioScheduler, Scheduler


@dataclass
class ClientContext:
    """Owns one student's HTTP client, scheduler and both client components.

    Use as an async context manager so the tracker gets its final flush and the
    HTTP client is closed when the session ends.
    """

    http: httpx.AsyncClient
    scheduler: Scheduler
    tracker: BehaviorTracker
    recommendations: RecommendationService

    def start(self) -> None:
        self.tracker.start()
        self.recommendations.start()

    async def aclose(self) -> None:
        try:
            await self.tracker.cleanup()
            self.recommendations.stop()
        finally:
            await self.http.aclose()

    async def __aenter__(self) -> ClientContext:
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def create_client_context(
    base_url: str,
    user_email: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    scheduler: Scheduler | None = None,
    tracker_config: TrackerConfig | None = None,
    cache_config: RecommendationCacheConfig | None = None,
    timeout: float = 5.0,
) -> ClientContext:
    """Wire a tracker and recommendation cache that talk to ``base_url``."""
    http = httpx.AsyncClient(
        base_url=base_url,
        headers={USER_HEADER: user_email},
        timeout=timeout,
        transport=transport,
    )
    scheduler = scheduler or AsyncioScheduler()
    return ClientContext(
        http=http,
        scheduler=scheduler,
        tracker=BehaviorTracker(http, scheduler, tracker_config),
        recommendations=RecommendationService(http, scheduler, cache_config),
    )
