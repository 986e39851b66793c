from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from erp_gateway.core.config import settings
from erp_gateway.core.dependencies import get_cache_manager
from erp_gateway.core.response_cache import CachedResponse, ResponseCache
from erp_gateway.schemas.admin import CacheHealth, HealthResponse
from erp_gateway.services.cache_manager import CacheManager

router = APIRouter(tags=["Health"])

health_cache = ResponseCache(ttl=settings.cache.health_ttl)


@router.get("/health", response_model=HealthResponse)
async def health_check(
    cache: Annotated[CacheManager, Depends(get_cache_manager)],
    cached: Annotated[CachedResponse, Depends(health_cache)],
) -> HealthResponse:
    """Liveness plus cache readiness.

    The service stays up when the cache is disabled or its distributed tier
    is down, so this always reports ``ok``; load balancers that care about
    the cache can read ``cache.ready``. Responses are cached briefly
    (``CACHE_HEALTH_TTL``).
    """

    async def report() -> HealthResponse:
        return HealthResponse(
            status="ok",
            cache=CacheHealth(
                enabled=cache.enabled,
                strategy=cache.strategy,
                ready=await cache.is_ready(),
            ),
        )

    return await cached.serve(report)
