from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query

from erp_gateway.adapters.rate_limit.base import AbstractUserRateLimiter
from erp_gateway.core.auth import require_admin
from erp_gateway.core.dependencies import get_cache_manager, get_query_cache
from erp_gateway.core.errors import ValidationAppError
from erp_gateway.core.rate_limit import enforce_user_rate_limit, get_rate_limiter
from erp_gateway.schemas.admin import (
    AggregatedRateLimitStatsResponse,
    CacheFlushResponse,
    CacheInvalidateRequest,
    CacheInvalidateResponse,
    EntityInvalidateRequest,
    EntityInvalidateResponse,
    UserRateLimitStatsResponse,
    UserResetResponse,
)
from erp_gateway.services.cache_manager import CacheManager
from erp_gateway.services.query_cache import QueryCacheService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(require_admin), Depends(enforce_user_rate_limit)],
)

CacheDep = Annotated[CacheManager, Depends(get_cache_manager)]
QueryCacheDep = Annotated[QueryCacheService, Depends(get_query_cache)]
LimiterDep = Annotated[AbstractUserRateLimiter, Depends(get_rate_limiter)]


@router.get("/cache/stats")
def cache_stats(cache: CacheDep) -> dict[str, Any]:
    """Cache strategy and hit/miss counters of the active adapter."""
    return cache.get_stats()


@router.post("/cache/invalidate", response_model=CacheInvalidateResponse)
async def invalidate_cache(body: CacheInvalidateRequest, cache: CacheDep) -> CacheInvalidateResponse:
    """Delete every cached key matching ``pattern`` (``*`` is the only wildcard)."""
    removed = await cache.invalidate(body.pattern)
    logger.info("admin.cache_invalidated", extra={"pattern": body.pattern, "removed": removed})
    return CacheInvalidateResponse(pattern=body.pattern, removed=removed)


@router.post("/cache/invalidate-entities", response_model=EntityInvalidateResponse)
async def invalidate_entities(
    body: EntityInvalidateRequest, query_cache: QueryCacheDep
) -> EntityInvalidateResponse:
    """Drop cached query results of the given entities (e.g. after an ERP import)."""
    entities = list(dict.fromkeys(body.entities))
    removed = await query_cache.invalidate_many(f"{entity}:*" for entity in entities)
    return EntityInvalidateResponse(entities=entities, removed=removed)


@router.delete("/cache", response_model=CacheFlushResponse)
async def flush_cache(cache: CacheDep) -> CacheFlushResponse:
    await cache.flush()
    logger.warning("admin.cache_flushed", extra={"strategy": cache.strategy})
    return CacheFlushResponse(flushed=cache.enabled)


@router.get(
    "/rate-limit/stats",
    response_model=UserRateLimitStatsResponse | AggregatedRateLimitStatsResponse,
)
def rate_limit_stats(
    limiter: LimiterDep,
    user_id: Annotated[str | None, Query(min_length=1)] = None,
) -> UserRateLimitStatsResponse | AggregatedRateLimitStatsResponse:
    """Usage of one user, or tracked-user counts by tier without ``user_id``."""
    stats = limiter.get_stats(user_id)
    if stats is None:
        raise ValidationAppError(
            code="rate_limit_user_not_tracked",
            message=f"No rate limit usage recorded for user '{user_id}'",
        )
    if user_id is None:
        return AggregatedRateLimitStatsResponse(**stats)
    return UserRateLimitStatsResponse(**stats)


@router.delete("/rate-limit/users/{user_id}", response_model=UserResetResponse)
def reset_user_rate_limit(user_id: str, limiter: LimiterDep) -> UserResetResponse:
    """Clear a user's counters so their next request starts fresh."""
    return UserResetResponse(user_id=user_id, reset=limiter.reset_user(user_id))
