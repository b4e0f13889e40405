"""Client-side behavior tracking and recommendation caching."""

from .behavior_tracker import BehaviorTracker, TrackerConfig
from .context import ClientContext, create_client_context
from .events import DeliveryState, QueuedEvent
from .recommendation_service import (
    RecommendationCacheConfig,
    RecommendationService,
    RecommendationsUnavailable,
)
from .scheduler import AsyncioScheduler, ManualScheduler, TaskHandle

__all__ = [
    "AsyncioScheduler",
    "BehaviorTracker",
    "ClientContext",
    "DeliveryState",
    "ManualScheduler",
    "QueuedEvent",
    "RecommendationCacheConfig",
    "RecommendationService",
    "RecommendationsUnavailable",
    "TaskHandle",
    "TrackerConfig",
    "create_client_context",
]
