"""Unit tests for strategy-based adapter construction."""

import pytest

from erp_gateway.adapters.cache.factory import create_cache_adapter
from erp_gateway.adapters.cache.layered import LayeredCacheAdapter
from erp_gateway.adapters.cache.memory import MemoryCacheAdapter
from erp_gateway.adapters.cache.redis_cache import RedisCacheAdapter
from erp_gateway.core.config import CacheSettings
from erp_gateway.core.errors import ValidationAppError


@pytest.fixture
def cache_settings() -> CacheSettings:
    return CacheSettings(
        enabled=True,
        strategy="memory",
        default_ttl=120,
        redis_url="redis://cache.internal:6379/1",
        memory_check_period=30.0,
    )


@pytest.mark.asyncio
async def test_memory_strategy(cache_settings) -> None:
    adapter = create_cache_adapter("memory", cache_settings)
    try:
        assert isinstance(adapter, MemoryCacheAdapter)
        assert adapter.name == "Cache-Memory"
    finally:
        await adapter.close()


@pytest.mark.asyncio
async def test_distributed_strategy_builds_redis_without_connecting(cache_settings) -> None:
    adapter = create_cache_adapter("distributed", cache_settings)

    assert isinstance(adapter, RedisCacheAdapter)
    assert adapter.name == "Cache-Redis"
    assert await adapter.is_ready() is False
    await adapter.close()


@pytest.mark.asyncio
async def test_layered_strategy_combines_memory_and_redis(cache_settings) -> None:
    adapter = create_cache_adapter("  Layered ", cache_settings)

    assert isinstance(adapter, LayeredCacheAdapter)
    assert isinstance(adapter.l1, MemoryCacheAdapter)
    assert isinstance(adapter.l2, RedisCacheAdapter)
    # L1 is always ready, so the layered cache is too
    assert await adapter.is_ready() is True
    await adapter.close()


def test_unknown_strategy_raises_validation_error(cache_settings) -> None:
    with pytest.raises(ValidationAppError) as exc_info:
        create_cache_adapter("memcached", cache_settings)

    assert exc_info.value.code == "cache_unknown_strategy"


def test_bad_redis_url_raises(cache_settings) -> None:
    broken = cache_settings.model_copy(update={"redis_url": "ftp://nowhere"})

    with pytest.raises(ValueError):
        create_cache_adapter("distributed", broken)
