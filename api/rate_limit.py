"""Per-endpoint rate limit gate and its HTTP 429 translation."""

from __future__ import annotations

import asyncio
import logging

from fastapi.responses import JSONResponse
from prometheus_client import Counter

from utils.rate_limiter import RateLimiter, RateLimitResult
from utils.settings import Settings

logger = logging.getLogger(__name__)

TRACKING = "tracking"
RECOMMENDATIONS = "recommendations"

RATE_LIMIT_REJECTIONS = Counter(
    "rate_limit_rejections_total",
    "Requests rejected by the in-memory rate limiter.",
    ("limiter",),
)


class RateLimitGate:
    """The tracking and recommendation limiters for one application."""

    def __init__(self, settings: Settings) -> None:
        self._limiters = {
            TRACKING: RateLimiter(settings.tracking_max_requests, settings.tracking_window_s),
            RECOMMENDATIONS: RateLimiter(
                settings.recommendations_max_requests, settings.recommendations_window_s
            ),
        }

    def get_limiter(self, limiter_type: str) -> RateLimiter:
        try:
            return self._limiters[limiter_type]
        except KeyError:
            raise ValueError(f"Unknown rate limiter: {limiter_type}") from None

    def check(self, limiter_type: str, identifier: str) -> RateLimitResult:
        result = self.get_limiter(limiter_type).check_limit(identifier)
        if not result.allowed:
            RATE_LIMIT_REJECTIONS.labels(limiter=limiter_type).inc()
            logger.warning(
                "rate limit exceeded",
                extra={"limiter": limiter_type, "retry_after": result.retry_after},
            )
        return result

    def cleanup(self) -> int:
        return sum(limiter.cleanup() for limiter in self._limiters.values())

    def sizes(self) -> dict[str, int]:
        return {name: len(limiter) for name, limiter in self._limiters.items()}


def rate_limited_response(result: RateLimitResult, limit: int) -> JSONResponse:
    """Build the 429 response for a rejected request."""
    retry_after = result.retry_after or 0
    return JSONResponse(
        status_code=429,
        content={"ok": False, "error": "Rate limit exceeded", "retryAfter": retry_after},
        headers={
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": result.reset_at.isoformat(),
            "Retry-After": str(retry_after),
        },
    )


async def run_cleanup_loop(gate: RateLimitGate, interval_s: float) -> None:
    """Periodically forget identifiers whose windows have emptied."""
    while True:
        try:
            await asyncio.sleep(interval_s)
        except asyncio.CancelledError:
            logger.info("rate limit cleanup loop cancelled")
            break
        removed = gate.cleanup()
        if removed:
            logger.debug("rate limit cleanup removed %d identifiers", removed)
