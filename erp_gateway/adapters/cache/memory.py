"""In-process TTL cache tier.

Notes:
- Per-process only: each worker holds its own copy.
- No capacity bound; entries leave only through TTL expiry, delete or flush.
- Values are stored by reference, never copied. Mutating an object returned
  by ``get`` mutates the cached entry too, so callers treat cached values as
  read-only.
- Thread-safe: uses a lock around shared state. A daemon thread sweeps
  expired entries every ``check_period`` seconds regardless of traffic.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from erp_gateway.adapters.cache.base import (
    CacheAdapter,
    CacheStats,
    compute_hit_rate,
    glob_to_regex,
)
from erp_gateway.utils.periodic import PeriodicTask

logger = logging.getLogger(__name__)


@dataclass
class CacheItem:
    """Container for cached values with expiration metadata."""

    value: Any
    expires_at: float


class MemoryCacheAdapter(CacheAdapter):
    """In-memory key/value tier with per-entry TTL.

    Attributes:
        name: Label used in logs (e.g. "L1-Memory").
    """

    def __init__(
        self,
        default_ttl: int = 300,
        name: str = "L1-Memory",
        *,
        check_period: float | None = 120.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the tier and start the expiry sweep.

        Args:
            default_ttl: TTL in seconds applied when ``set`` omits one.
            name: Label used in logs.
            check_period: Sweep interval in seconds; None disables the sweep
                (expired entries are then only dropped lazily on access).
            clock: Time source returning UNIX time in seconds.

        Raises:
            ValueError: If default_ttl is invalid.
        """
        if default_ttl < 1:
            raise ValueError("default_ttl must be >= 1")

        self.name = name
        self._default_ttl = default_ttl
        self._clock = clock
        self._store: dict[str, CacheItem] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._closed = False

        self._sweeper: PeriodicTask | None = None
        if check_period is not None:
            self._sweeper = PeriodicTask(f"{name}-expiry-sweep", check_period, self.sweep_expired)
            self._sweeper.start()

        logger.info(
            "cache.tier_initialized",
            extra={"cache_name": name, "ttl_s": default_ttl, "check_period_s": check_period},
        )

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"MemoryCacheAdapter(name={self.name!r}, default_ttl={self._default_ttl}, "
            f"size={len(self._store)}, hits={self._hits}, misses={self._misses})"
        )

    async def get(self, key: str) -> Any | None:
        try:
            with self._lock:
                item = self._store.get(key)
                if item is not None and self._is_expired(item):
                    del self._store[key]
                    item = None

                if item is None:
                    self._misses += 1
                    logger.debug("cache.miss", extra={"cache_name": self.name, "cache_key": key})
                    return None

                self._hits += 1
                logger.debug("cache.hit", extra={"cache_name": self.name, "cache_key": key})
                return item.value
        except Exception as exc:
            logger.error(
                "cache.get_failed",
                extra={"cache_name": self.name, "cache_key": key, "error": str(exc)},
            )
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        try:
            effective_ttl = ttl if ttl and ttl > 0 else self._default_ttl
            with self._lock:
                self._store[key] = CacheItem(value=value, expires_at=self._clock() + effective_ttl)
            logger.debug(
                "cache.set",
                extra={"cache_name": self.name, "cache_key": key, "ttl_s": effective_ttl},
            )
            return True
        except Exception as exc:
            logger.error(
                "cache.set_failed",
                extra={"cache_name": self.name, "cache_key": key, "error": str(exc)},
            )
            return False

    async def delete(self, key: str) -> int:
        try:
            with self._lock:
                item = self._store.pop(key, None)
            deleted = 0 if item is None or self._is_expired(item) else 1
            logger.debug(
                "cache.delete",
                extra={"cache_name": self.name, "cache_key": key, "deleted": deleted},
            )
            return deleted
        except Exception as exc:
            logger.error(
                "cache.delete_failed",
                extra={"cache_name": self.name, "cache_key": key, "error": str(exc)},
            )
            return 0

    async def flush(self) -> None:
        try:
            with self._lock:
                self._store.clear()
            logger.info("cache.flushed", extra={"cache_name": self.name})
        except Exception as exc:
            logger.error("cache.flush_failed", extra={"cache_name": self.name, "error": str(exc)})

    async def keys(self, pattern: str | None = None) -> list[str]:
        try:
            with self._lock:
                now = self._clock()
                live = [k for k, item in self._store.items() if item.expires_at > now]

            if not pattern:
                return live

            regex = glob_to_regex(pattern)
            matched = [k for k in live if regex.match(k)]
            logger.debug(
                "cache.keys",
                extra={"cache_name": self.name, "pattern": pattern, "total": len(matched)},
            )
            return matched
        except Exception as exc:
            logger.error(
                "cache.keys_failed",
                extra={"cache_name": self.name, "pattern": pattern, "error": str(exc)},
            )
            return []

    async def is_ready(self) -> bool:
        return True

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._sweeper is not None:
            self._sweeper.stop()
        logger.info("cache.tier_closed", extra={"cache_name": self.name})

    def get_stats(self) -> CacheStats:
        """Return native hit/miss counters without exposing values."""

        with self._lock:
            now = self._clock()
            live = sum(1 for item in self._store.values() if item.expires_at > now)
            return {
                "hits": self._hits,
                "misses": self._misses,
                "keys": live,
                "hit_rate": compute_hit_rate(self._hits, self._misses),
            }

    def sweep_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""

        with self._lock:
            now = self._clock()
            expired = [k for k, item in self._store.items() if item.expires_at <= now]
            for key in expired:
                del self._store[key]

        if expired:
            logger.debug(
                "cache.expired_swept",
                extra={"cache_name": self.name, "removed": len(expired)},
            )
        return len(expired)

    def _is_expired(self, item: CacheItem) -> bool:
        return self._clock() >= item.expires_at
