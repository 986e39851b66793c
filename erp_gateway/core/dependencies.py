"""FastAPI dependencies exposing the application's service objects."""

from __future__ import annotations

from fastapi import Request

from erp_gateway.services.cache_manager import CacheManager
from erp_gateway.services.query_cache import QueryCacheService


def get_cache_manager(request: Request) -> CacheManager:
    """Return the application's cache facade (built in the lifespan)."""
    return request.app.state.cache


def get_query_cache(request: Request) -> QueryCacheService:
    return request.app.state.query_cache
