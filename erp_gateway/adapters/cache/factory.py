"""Factory for cache adapters selected by strategy name."""

from __future__ import annotations

from enum import Enum

from erp_gateway.adapters.cache.base import CacheAdapter
from erp_gateway.adapters.cache.layered import LayeredCacheAdapter
from erp_gateway.adapters.cache.memory import MemoryCacheAdapter
from erp_gateway.adapters.cache.redis_cache import RedisCacheAdapter
from erp_gateway.core.config import CacheSettings
from erp_gateway.core.errors import ValidationAppError


class CacheStrategy(str, Enum):
    """Supported storage strategies."""

    MEMORY = "memory"
    DISTRIBUTED = "distributed"
    LAYERED = "layered"


def create_cache_adapter(strategy: str, cache_settings: CacheSettings) -> CacheAdapter:
    """Instantiate the adapter for ``strategy``.

    Args:
        strategy: One of memory, distributed, layered (case-insensitive).
        cache_settings: TTL, Redis URL and tier tuning knobs.

    Returns:
        CacheAdapter: A constructed, not yet connected adapter.

    Raises:
        ValidationAppError: If the strategy is unknown.
        ValueError: If the distributed tier is misconfigured (e.g. bad URL).
    """
    try:
        selected = CacheStrategy(strategy.strip().lower())
    except ValueError as exc:
        supported = ", ".join(s.value for s in CacheStrategy)
        raise ValidationAppError(
            code="cache_unknown_strategy",
            message=f"Unknown cache strategy: '{strategy}'. Supported strategies: {supported}",
        ) from exc

    ttl = cache_settings.default_ttl

    if selected is CacheStrategy.MEMORY:
        return MemoryCacheAdapter(
            ttl,
            "Cache-Memory",
            check_period=cache_settings.memory_check_period,
        )

    if selected is CacheStrategy.DISTRIBUTED:
        return _build_redis(cache_settings, "Cache-Redis")

    # Build L2 first so a bad URL fails before L1 starts its sweep thread
    l2 = _build_redis(cache_settings, "L2-Redis")
    l1 = MemoryCacheAdapter(ttl, "L1-Memory", check_period=cache_settings.memory_check_period)
    return LayeredCacheAdapter(l1, l2, "Cache-Layered")


def _build_redis(cache_settings: CacheSettings, name: str) -> RedisCacheAdapter:
    return RedisCacheAdapter(
        cache_settings.redis_url,
        name,
        default_ttl=cache_settings.default_ttl,
        max_retries=cache_settings.redis_max_retries,
        scan_count=cache_settings.redis_scan_count,
    )
