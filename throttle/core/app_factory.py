"""Application factory for the FastAPI app.

Centralizes app construction (limiter, middleware, handlers, routers) so
tests can build isolated apps with their own limiter.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from throttle.adapters.rate_limit.base import AbstractRateLimiter
from throttle.adapters.rate_limit.factory import create_rate_limiter
from throttle.adapters.rate_limit.sweeper import ExpirySweeper
from throttle.api.routes import health_router, limits_router
from throttle.core.config import settings
from throttle.core.exception_handlers import setup_exception_handlers
from throttle.core.logging import configure_logging
from throttle.core.middleware import request_id_middleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the expiry sweeper on startup and cancel it on shutdown."""
    limiter: AbstractRateLimiter = app.state.rate_limiter
    interval_ms = settings.rate_limit.sweep_interval_ms

    sweeper = ExpirySweeper(limiter, interval_ms=interval_ms) if interval_ms else None
    app.state.sweeper = sweeper
    if sweeper is not None:
        sweeper.start()

    logger.info(
        "app.started",
        extra={
            "strategy": limiter.config.strategy,
            "limit": limiter.config.limit,
            "window_ms": limiter.config.window_ms,
            "sweeper_enabled": sweeper is not None,
        },
    )
    try:
        yield
    finally:
        if sweeper is not None:
            await sweeper.stop()
        logger.info("app.stopped", extra={"tracked_clients": limiter.tracked_clients()})


def create_app(limiter: AbstractRateLimiter | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        limiter: Limiter to install; built from settings when omitted.

    Returns:
        Configured FastAPI app.

    Raises:
        ConfigurationAppError: If the rate limit configuration is invalid.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title=settings.app.title,
        description=(
            "Per-client request rate limiting with fixed or sliding windows. "
            "Rate-limited routes return X-RateLimit-* headers and 429 once the "
            "client's budget for the current window is spent."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=lifespan,
    )

    # Built eagerly so configuration errors stop startup
    app.state.rate_limiter = limiter or create_rate_limiter()
    app.state.sweeper = None

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(limits_router, prefix="/v1")
    app.include_router(health_router)

    return app
