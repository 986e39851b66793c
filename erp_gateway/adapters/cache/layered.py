"""Two-tier cache: fast local L1 in front of a shared L2.

Reads check L1 first and fall through to L2; an L2 hit is promoted into L1
before it is returned, so the next read on this instance stays local.
Writes, deletes and flushes go to both tiers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, TypedDict

from erp_gateway.adapters.cache.base import CacheAdapter, compute_hit_rate

logger = logging.getLogger(__name__)


class TierCounters(TypedDict):
    hits: int
    misses: int
    hit_rate: float


class LayeredStats(TypedDict):
    l1: TierCounters
    l2: TierCounters
    overall: TierCounters


class LayeredCacheAdapter(CacheAdapter):
    """Compose an L1 and an L2 adapter behind the single-tier contract."""

    def __init__(self, l1: CacheAdapter, l2: CacheAdapter, name: str = "Layered") -> None:
        self.name = name
        self._l1 = l1
        self._l2 = l2
        self._l1_hits = 0
        self._l1_misses = 0
        self._l2_hits = 0
        self._l2_misses = 0
        logger.info(
            "cache.tier_initialized",
            extra={"cache_name": name, "l1": l1.name, "l2": l2.name},
        )

    @property
    def l1(self) -> CacheAdapter:
        return self._l1

    @property
    def l2(self) -> CacheAdapter:
        return self._l2

    async def connect(self) -> None:
        await asyncio.gather(self._l1.connect(), self._l2.connect(), return_exceptions=True)

    async def get(self, key: str) -> Any | None:
        try:
            value = await self._l1.get(key)
            if value is not None:
                self._l1_hits += 1
                logger.debug("cache.l1_hit", extra={"cache_name": self.name, "cache_key": key})
                return value
            self._l1_misses += 1

            value = await self._l2.get(key)
            if value is None:
                self._l2_misses += 1
                logger.debug("cache.miss", extra={"cache_name": self.name, "cache_key": key})
                return None

            self._l2_hits += 1
            logger.debug("cache.l2_hit", extra={"cache_name": self.name, "cache_key": key})
            await self._promote(key, value)
            return value
        except Exception as exc:
            logger.error(
                "cache.get_failed",
                extra={"cache_name": self.name, "cache_key": key, "error": str(exc)},
            )
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        l1_result, l2_result = await asyncio.gather(
            self._l1.set(key, value, ttl),
            self._l2.set(key, value, ttl),
            return_exceptions=True,
        )
        l1_ok = l1_result is True
        l2_ok = l2_result is True

        if not l1_ok:
            logger.warning("cache.l1_set_failed", extra={"cache_name": self.name, "cache_key": key})
        if not l2_ok:
            logger.warning("cache.l2_set_failed", extra={"cache_name": self.name, "cache_key": key})

        logger.debug(
            "cache.set",
            extra={"cache_name": self.name, "cache_key": key, "ttl_s": ttl, "l1_ok": l1_ok, "l2_ok": l2_ok},
        )
        return l1_ok or l2_ok

    async def delete(self, key: str) -> int:
        l1_result, l2_result = await asyncio.gather(
            self._l1.delete(key),
            self._l2.delete(key),
            return_exceptions=True,
        )
        l1_count = l1_result if isinstance(l1_result, int) else 0
        l2_count = l2_result if isinstance(l2_result, int) else 0

        # One logical key, however many tiers held it
        deleted = 1 if l1_count or l2_count else 0
        logger.debug(
            "cache.delete",
            extra={"cache_name": self.name, "cache_key": key, "l1": l1_count, "l2": l2_count},
        )
        return deleted

    async def flush(self) -> None:
        await asyncio.gather(self._l1.flush(), self._l2.flush(), return_exceptions=True)
        logger.info("cache.flushed", extra={"cache_name": self.name})

    async def keys(self, pattern: str | None = None) -> list[str]:
        l1_result, l2_result = await asyncio.gather(
            self._l1.keys(pattern),
            self._l2.keys(pattern),
            return_exceptions=True,
        )
        l1_keys = l1_result if isinstance(l1_result, list) else []
        l2_keys = l2_result if isinstance(l2_result, list) else []

        merged = list(dict.fromkeys([*l1_keys, *l2_keys]))
        logger.debug(
            "cache.keys",
            extra={
                "cache_name": self.name,
                "pattern": pattern,
                "total": len(merged),
                "l1": len(l1_keys),
                "l2": len(l2_keys),
            },
        )
        return merged

    async def is_ready(self) -> bool:
        try:
            l1_ready, l2_ready = await asyncio.gather(self._l1.is_ready(), self._l2.is_ready())
        except Exception as exc:
            logger.error("cache.ready_check_failed", extra={"cache_name": self.name, "error": str(exc)})
            return False

        if not (l1_ready or l2_ready):
            logger.warning("cache.all_tiers_unavailable", extra={"cache_name": self.name})
        return bool(l1_ready or l2_ready)

    async def close(self) -> None:
        await asyncio.gather(self._l1.close(), self._l2.close(), return_exceptions=True)
        logger.info("cache.tier_closed", extra={"cache_name": self.name})

    def get_stats(self) -> LayeredStats:
        total_hits = self._l1_hits + self._l2_hits
        return {
            "l1": {
                "hits": self._l1_hits,
                "misses": self._l1_misses,
                "hit_rate": compute_hit_rate(self._l1_hits, self._l1_misses),
            },
            "l2": {
                "hits": self._l2_hits,
                "misses": self._l2_misses,
                "hit_rate": compute_hit_rate(self._l2_hits, self._l2_misses),
            },
            "overall": {
                "hits": total_hits,
                "misses": self._l2_misses,
                "hit_rate": compute_hit_rate(total_hits, self._l2_misses),
            },
        }

    async def _promote(self, key: str, value: Any) -> None:
        try:
            await self._l1.set(key, value)
        except Exception as exc:
            logger.warning(
                "cache.promote_failed",
                extra={"cache_name": self.name, "cache_key": key, "error": str(exc)},
            )
