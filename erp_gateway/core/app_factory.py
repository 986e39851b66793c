"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) and
owns the lifetime of the resilience services kept on ``app.state``: one
``CacheManager`` with its ``QueryCacheService``, the per-user rate limiter
and the per-address limiter for anonymous callers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from erp_gateway.api.routes import admin_router, health_router
from erp_gateway.core.config import settings
from erp_gateway.core.exception_handlers import setup_exception_handlers
from erp_gateway.core.logging import configure_logging
from erp_gateway.core.middleware import request_id_middleware
from erp_gateway.core.openapi import apply_openapi_customizations
from erp_gateway.core.rate_limit import build_ip_rate_limiter, build_user_rate_limiter
from erp_gateway.services.cache_manager import CacheManager
from erp_gateway.services.query_cache import QueryCacheService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    cache: CacheManager = app.state.cache
    limiters = (app.state.rate_limiter, app.state.ip_rate_limiter)

    await cache.initialize()
    for limiter in limiters:
        limiter.start_cleanup()
    logger.info(
        "app.started",
        extra={"cache_strategy": cache.strategy, "rate_limit_enabled": settings.rate_limit.enabled},
    )
    try:
        yield
    finally:
        for limiter in limiters:
            limiter.stop_cleanup()
        await cache.close()
        logger.info("app.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="ERP Gateway API",
        description=(
            "Read API in front of a slow ERP database. Responses are served "
            "through a multi-tier cache (in-process, Redis or both) and every "
            "authenticated caller is limited per minute, hour and day according "
            "to their subscription tier. Requires X-API-Key."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.cache = CacheManager(settings.cache)
    app.state.query_cache = QueryCacheService(app.state.cache)
    app.state.rate_limiter = build_user_rate_limiter(settings.rate_limit)
    app.state.ip_rate_limiter = build_ip_rate_limiter(settings.rate_limit)

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(admin_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, exemptions)
    apply_openapi_customizations(app)

    return app
