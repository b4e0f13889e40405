"""FastAPI application serving student tracking and recommendations."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from api import recommendations, tracking
from api.rate_limit import RateLimitGate, run_cleanup_loop
from utils.logging_setup import configure_logging
from utils.settings import Settings, load_settings


@asynccontextmanager
async def _lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    configure_logging(settings.service_name, level=settings.log_level)
    task = asyncio.create_task(
        run_cleanup_loop(app.state.rate_limits, settings.rate_limit_cleanup_interval_s)
    )
    app.state.rate_limit_cleanup_task = task
    try:
        yield
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        app.state.rate_limit_cleanup_task = None


def metrics() -> Response:
    """Expose Prometheus metrics for scraping."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the API with its own rate limiters and settings."""
    settings = settings or load_settings()
    app = FastAPI(title="Library recommendations", lifespan=_lifespan)
    app.state.settings = settings
    app.state.rate_limits = RateLimitGate(settings)
    app.include_router(tracking.router)
    app.include_router(recommendations.router)
    app.add_api_route("/metrics", metrics, methods=["GET"], include_in_schema=False)

    @app.get("/health")
    def health() -> dict[str, object]:
        """Liveness check with the number of identifiers each limiter tracks."""
        return {"healthy": True, "rateLimiters": app.state.rate_limits.sizes()}

    return app


app = create_app()
