"""Distributed cache tier backed by Redis.

State shared by every instance of the service. Values are stored as JSON
text. The tier tracks its own readiness: it becomes ready after a
successful PING handshake and drops back to not-ready whenever a
connection error surfaces, at which point a background loop reconnects
with capped exponential backoff. While not ready, every operation
short-circuits to its neutral result without touching the network.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import AbstractBackoff, ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from erp_gateway.adapters.cache.base import CacheAdapter
from erp_gateway.core.logging import redact_url

logger = logging.getLogger(__name__)

_CONNECTION_ERRORS = (RedisConnectionError, RedisTimeoutError, ConnectionError, OSError)

# Characters Redis MATCH treats as glob syntax besides "*"
_REDIS_GLOB_SPECIALS = ("\\", "?", "[", "]")


def to_redis_match(pattern: str) -> str:
    """Escape Redis glob syntax so only ``*`` acts as a wildcard.

    Examples:
        >>> to_redis_match("item:[1]?*")
        'item:\\\\[1\\\\]\\\\?*'
    """

    for char in _REDIS_GLOB_SPECIALS:
        pattern = pattern.replace(char, "\\" + char)
    return pattern


class RedisCacheAdapter(CacheAdapter):
    """Redis-backed key/value tier with TTL support."""

    def __init__(
        self,
        url: str,
        name: str = "L2-Redis",
        *,
        default_ttl: int | None = None,
        max_retries: int = 3,
        scan_count: int = 100,
        backoff: AbstractBackoff | None = None,
        client: redis.Redis | None = None,
    ) -> None:
        """Build the client; no network I/O happens until ``connect()``.

        Args:
            url: Redis connection URL.
            name: Label used in logs.
            default_ttl: TTL in seconds applied when ``set`` omits one;
                None means plain writes without expiry.
            max_retries: Retries per request on connection/timeout errors.
            scan_count: COUNT hint for each SCAN page.
            backoff: Backoff policy for request retries and reconnection.
            client: Pre-built client (tests inject a mock here).

        Raises:
            ValueError: If the URL is malformed (unknown scheme, bad port).
        """
        self.name = name
        self._url = url
        self._default_ttl = default_ttl
        self._scan_count = scan_count
        self._backoff = backoff or ExponentialBackoff(cap=2.0, base=0.05)
        self._ready = False
        self._closed = False
        self._reconnect_task: asyncio.Task[None] | None = None

        if client is None:
            client = redis.from_url(
                url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry=Retry(self._backoff, max_retries),
                retry_on_error=[RedisConnectionError, RedisTimeoutError],
                health_check_interval=30,
            )
        self._redis = client

    async def connect(self) -> None:
        """Run the PING handshake; on failure start reconnecting in background."""

        if self._closed:
            return

        logger.info("cache.connecting", extra={"cache_name": self.name, "url": redact_url(self._url)})
        try:
            await self._redis.ping()
        except Exception as exc:
            logger.warning(
                "cache.connect_failed",
                extra={"cache_name": self.name, "error": str(exc)},
            )
            self._schedule_reconnect()
            return

        self._mark_ready()

    async def get(self, key: str) -> Any | None:
        if not self._ready:
            logger.warning("cache.not_ready", extra={"cache_name": self.name, "cache_key": key})
            return None

        try:
            raw = await self._redis.get(key)
        except Exception as exc:
            self._handle_error("get", exc, cache_key=key)
            return None

        if raw is None:
            logger.debug("cache.miss", extra={"cache_name": self.name, "cache_key": key})
            return None

        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.warning(
                "cache.decode_failed",
                extra={"cache_name": self.name, "cache_key": key, "error": str(exc)},
            )
            return None

        logger.debug("cache.hit", extra={"cache_name": self.name, "cache_key": key})
        return value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        if not self._ready:
            logger.warning("cache.not_ready", extra={"cache_name": self.name, "cache_key": key})
            return False

        effective_ttl = ttl if ttl and ttl > 0 else self._default_ttl
        try:
            serialized = json.dumps(value)
            if effective_ttl and effective_ttl > 0:
                await self._redis.setex(key, effective_ttl, serialized)
            else:
                await self._redis.set(key, serialized)
        except Exception as exc:
            self._handle_error("set", exc, cache_key=key)
            return False

        logger.debug(
            "cache.set",
            extra={"cache_name": self.name, "cache_key": key, "ttl_s": effective_ttl},
        )
        return True

    async def delete(self, key: str) -> int:
        if not self._ready:
            logger.warning("cache.not_ready", extra={"cache_name": self.name, "cache_key": key})
            return 0

        try:
            deleted = int(await self._redis.delete(key))
        except Exception as exc:
            self._handle_error("delete", exc, cache_key=key)
            return 0

        logger.debug(
            "cache.delete",
            extra={"cache_name": self.name, "cache_key": key, "deleted": deleted},
        )
        return deleted

    async def flush(self) -> None:
        if not self._ready:
            logger.warning("cache.not_ready", extra={"cache_name": self.name})
            return

        try:
            await self._redis.flushall()
        except Exception as exc:
            self._handle_error("flush", exc)
            return

        logger.info("cache.flushed", extra={"cache_name": self.name})

    async def keys(self, pattern: str | None = None) -> list[str]:
        """Collect matching keys with cursor-based SCAN (never KEYS)."""

        if not self._ready:
            logger.warning("cache.not_ready", extra={"cache_name": self.name, "pattern": pattern})
            return []

        match = to_redis_match(pattern) if pattern else "*"
        found: dict[str, None] = {}
        cursor = 0
        try:
            while True:
                cursor, batch = await self._redis.scan(
                    cursor=cursor, match=match, count=self._scan_count
                )
                # SCAN may return a key more than once across pages
                found.update(dict.fromkeys(batch))
                if int(cursor) == 0:
                    break
        except Exception as exc:
            self._handle_error("keys", exc, pattern=pattern)
            return []

        logger.debug(
            "cache.keys",
            extra={"cache_name": self.name, "pattern": pattern, "total": len(found)},
        )
        return list(found)

    async def is_ready(self) -> bool:
        return self._ready

    async def ping(self) -> bool:
        """Liveness probe against the server."""

        try:
            return bool(await self._redis.ping())
        except Exception as exc:
            self._handle_error("ping", exc)
            return False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._ready = False

        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        try:
            await self._redis.aclose()
        except Exception as exc:
            logger.error("cache.close_failed", extra={"cache_name": self.name, "error": str(exc)})
            return

        logger.info("cache.tier_closed", extra={"cache_name": self.name})

    def _mark_ready(self) -> None:
        self._ready = True
        logger.info("cache.ready", extra={"cache_name": self.name})

    def _handle_error(self, operation: str, exc: Exception, **context: Any) -> None:
        logger.error(
            f"cache.{operation}_failed",
            extra={"cache_name": self.name, "error": str(exc), **context},
        )
        if isinstance(exc, _CONNECTION_ERRORS) and self._ready:
            self._ready = False
            logger.warning("cache.connection_closed", extra={"cache_name": self.name})
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closed:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._reconnect_task = loop.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        attempt = 0
        while not self._closed and not self._ready:
            attempt += 1
            delay = self._backoff.compute(attempt)
            logger.warning(
                "cache.reconnecting",
                extra={"cache_name": self.name, "attempt": attempt, "delay_s": delay},
            )
            await asyncio.sleep(delay)
            if self._closed:
                return
            try:
                await self._redis.ping()
            except Exception:
                continue
            self._mark_ready()
