"""Process-wide cache facade.

One ``CacheManager`` is built per application and handed to whoever needs
it (request handlers reach it through ``app.state``). At startup it reads
the cache configuration once, constructs the adapter for the configured
strategy and runs its connection handshake.

Failure policy:
- If the requested strategy cannot be constructed (unknown name, bad Redis
  URL), the failure is logged and the in-process tier is used instead so the
  service still starts, in degraded mode.
- With caching disabled no adapter is built at all: reads are permanent
  misses, writes are no-ops, and ``get_or_set`` always computes.
- No operation raises; the only errors that escape are those raised by the
  caller's own compute function in ``get_or_set``.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, TypeVar

from erp_gateway.adapters.cache.base import CacheAdapter
from erp_gateway.adapters.cache.factory import create_cache_adapter
from erp_gateway.adapters.cache.memory import MemoryCacheAdapter
from erp_gateway.core.config import CacheSettings, settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

AdapterFactory = Callable[[str, CacheSettings], CacheAdapter]


def build_cache_key(*parts: Any) -> str:
    """Join key parts with ``:``, skipping parts that are None.

    Examples:
        >>> build_cache_key("item", 123, "profile")
        'item:123:profile'
        >>> build_cache_key("item", None, 0)
        'item:0'
        >>> build_cache_key(None, None)
        ''
    """

    return ":".join(str(part).strip() for part in parts if part is not None)


class CacheManager:
    """Uniform cache entry point over the configured storage strategy."""

    def __init__(
        self,
        cache_settings: CacheSettings | None = None,
        *,
        adapter_factory: AdapterFactory = create_cache_adapter,
    ) -> None:
        self._settings = cache_settings or settings.cache
        self._adapter_factory = adapter_factory
        self._adapter: CacheAdapter | None = None
        self._enabled = False
        self._strategy = "none"
        self._initialized = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def strategy(self) -> str:
        return self._strategy

    @property
    def adapter(self) -> CacheAdapter | None:
        return self._adapter

    async def initialize(self, strategy: str | None = None) -> None:
        """Select and connect the storage strategy. Runs once; later calls are no-ops.

        Args:
            strategy: Overrides the configured strategy (mainly for tests).
        """

        if self._initialized:
            return
        self._initialized = True

        if not self._settings.enabled:
            self._enabled = False
            self._strategy = "none"
            logger.warning("cache.disabled", extra={"reason": "CACHE_ENABLED=false"})
            return

        requested = strategy or self._settings.strategy
        try:
            adapter = self._adapter_factory(requested, self._settings)
            selected = requested.strip().lower()
        except Exception as exc:
            logger.error(
                "cache.init_failed",
                extra={"strategy": requested, "error": str(exc), "fallback": "memory"},
            )
            adapter = MemoryCacheAdapter(
                self._settings.default_ttl,
                "Cache-Memory",
                check_period=self._settings.memory_check_period,
            )
            selected = "memory"

        self._adapter = adapter
        self._strategy = selected
        self._enabled = True

        try:
            await adapter.connect()
        except Exception as exc:
            logger.error("cache.connect_failed", extra={"strategy": selected, "error": str(exc)})

        logger.info(
            "cache.initialized",
            extra={"strategy": selected, "enabled": True, "ttl_s": self._settings.default_ttl},
        )

    async def get(self, key: str) -> Any | None:
        adapter = self._active()
        if adapter is None:
            return None
        try:
            return await adapter.get(key)
        except Exception as exc:
            logger.error("cache.get_failed", extra={"cache_key": key, "error": str(exc)})
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        adapter = self._active()
        if adapter is None:
            return False
        try:
            return await adapter.set(key, value, ttl)
        except Exception as exc:
            logger.error("cache.set_failed", extra={"cache_key": key, "error": str(exc)})
            return False

    async def delete(self, key: str) -> int:
        adapter = self._active()
        if adapter is None:
            return 0
        try:
            return await adapter.delete(key)
        except Exception as exc:
            logger.error("cache.delete_failed", extra={"cache_key": key, "error": str(exc)})
            return 0

    async def flush(self) -> None:
        adapter = self._active()
        if adapter is None:
            return
        try:
            await adapter.flush()
        except Exception as exc:
            logger.error("cache.flush_failed", extra={"error": str(exc)})

    async def keys(self, pattern: str | None = None) -> list[str]:
        adapter = self._active()
        if adapter is None:
            return []
        try:
            return await adapter.keys(pattern)
        except Exception as exc:
            logger.error("cache.keys_failed", extra={"pattern": pattern, "error": str(exc)})
            return []

    async def is_ready(self) -> bool:
        adapter = self._active()
        if adapter is None:
            return False
        try:
            return await adapter.is_ready()
        except Exception as exc:
            logger.error("cache.ready_check_failed", extra={"error": str(exc)})
            return False

    async def get_or_set(
        self,
        key: str,
        compute: Callable[[], T | Awaitable[T]],
        ttl: int | None = None,
    ) -> T:
        """Return the cached value for ``key`` or compute, store and return it.

        ``compute`` may be a plain or an async callable. It runs exactly once
        on a miss (always, when caching is disabled) and never on a hit.
        Exceptions raised by ``compute`` propagate to the caller.
        """

        cached = await self.get(key)
        if cached is not None:
            return cached

        logger.debug("cache.compute", extra={"cache_key": key})
        result = compute()
        if inspect.isawaitable(result):
            result = await result

        await self.set(key, result, ttl)
        return result  # type: ignore[return-value]

    async def invalidate(self, pattern: str) -> int:
        """Delete every key matching ``pattern``; returns how many were removed."""

        adapter = self._active()
        if adapter is None:
            return 0

        try:
            matched = await adapter.keys(pattern)
            removed = 0
            for key in matched:
                removed += await adapter.delete(key)
        except Exception as exc:
            logger.error("cache.invalidate_failed", extra={"pattern": pattern, "error": str(exc)})
            return 0

        if removed:
            logger.info("cache.invalidated", extra={"pattern": pattern, "removed": removed})
        return removed

    def get_stats(self) -> dict[str, Any]:
        """Report whether caching is active, the strategy and native counters."""

        if not self._enabled or self._adapter is None:
            return {"enabled": False, "strategy": "none"}

        stats: dict[str, Any] = {"enabled": True, "strategy": self._strategy}
        native = getattr(self._adapter, "get_stats", None)
        if callable(native):
            try:
                stats.update(native())
            except Exception as exc:
                logger.error("cache.stats_failed", extra={"error": str(exc)})
        return stats

    async def close(self) -> None:
        """Release the active adapter. Safe to call more than once."""

        adapter = self._adapter
        if adapter is None:
            return

        self._adapter = None
        self._enabled = False
        try:
            await adapter.close()
        except Exception as exc:
            logger.error("cache.close_failed", extra={"error": str(exc)})
            return
        logger.info("cache.closed", extra={"strategy": self._strategy})

    def _active(self) -> CacheAdapter | None:
        if not self._enabled:
            return None
        return self._adapter
