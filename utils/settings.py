"""Environment-driven settings for the recommendations service."""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Settings:
    service_name: str = "library-recommendations"
    log_level: str = "INFO"
    tracking_max_requests: int = 100
    tracking_window_s: float = 60.0
    recommendations_max_requests: int = 20
    recommendations_window_s: float = 60.0
    rate_limit_cleanup_interval_s: float = 60.0
    interaction_retention_days: int = 90
    max_recommendations: int = 20


def load_settings() -> Settings:
    """Build settings from the environment, keeping defaults for bad values."""
    defaults = Settings()
    return Settings(
        service_name=os.getenv("SERVICE_NAME", defaults.service_name),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        tracking_max_requests=_env_int("TRACKING_RATE_LIMIT", defaults.tracking_max_requests),
        tracking_window_s=_env_float("TRACKING_RATE_WINDOW_S", defaults.tracking_window_s),
        recommendations_max_requests=_env_int(
            "RECOMMENDATIONS_RATE_LIMIT", defaults.recommendations_max_requests
        ),
        recommendations_window_s=_env_float(
            "RECOMMENDATIONS_RATE_WINDOW_S", defaults.recommendations_window_s
        ),
        rate_limit_cleanup_interval_s=max(
            _env_float("RATE_LIMIT_CLEANUP_INTERVAL_S", defaults.rate_limit_cleanup_interval_s),
            1.0,
        ),
        interaction_retention_days=_env_int(
            "INTERACTION_RETENTION_DAYS", defaults.interaction_retention_days
        ),
        max_recommendations=max(
            _env_int("MAX_RECOMMENDATIONS", defaults.max_recommendations), 1
        ),
    )
