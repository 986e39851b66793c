"""Read-through caching for slow data queries.

Wraps a query callable with the cache facade, keyed by a digest of the
normalized SQL text and its parameters, so identical queries issued with
different whitespace or parameter order share one cache entry.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence, TypeVar

from erp_gateway.services.cache_manager import CacheManager, build_cache_key

logger = logging.getLogger(__name__)

T = TypeVar("T")

QueryFn = Callable[[], Awaitable[T]]
QueryParams = Sequence[Any] | Mapping[str, Any] | None

DEFAULT_TTL = 300
DEFAULT_PREFIX = "query"

# Per-entity TTLs in seconds
ENTITY_TTL = {
    "item": 600,
    "family": 3600,
    "establishment": 900,
    "health": 30,
}

_WHITESPACE = re.compile(r"\s+")


def _normalize_params(params: QueryParams) -> Any:
    """Produce an order-independent, JSON-friendly view of query parameters."""

    if params is None:
        return []
    if isinstance(params, Mapping):
        return sorted(params.items(), key=lambda item: str(item[0]))

    normalized = []
    for param in params:
        if isinstance(param, Mapping) and "name" in param:
            normalized.append({"name": param["name"], "value": param.get("value")})
        else:
            normalized.append(param)
    # Named parameters sort by name; positional ones keep their relative order
    return sorted(normalized, key=lambda p: str(p["name"]) if isinstance(p, dict) else "")


def build_query_key(sql: str, params: QueryParams = None, prefix: str = DEFAULT_PREFIX) -> str:
    """Build ``<prefix>:<16 hex chars>`` for a query and its parameters."""

    normalized_sql = _WHITESPACE.sub(" ", sql).strip()
    params_str = json.dumps(_normalize_params(params), default=str, sort_keys=True)
    digest = hashlib.md5(f"{normalized_sql}:{params_str}".encode("utf-8")).hexdigest()[:16]
    return build_cache_key(prefix, digest)


class QueryCacheService:
    """Query-result cache on top of a ``CacheManager``."""

    def __init__(self, cache: CacheManager) -> None:
        self._cache = cache

    async def with_cache(
        self,
        sql: str,
        params: QueryParams,
        query_fn: QueryFn[T],
        *,
        ttl: int = DEFAULT_TTL,
        prefix: str = DEFAULT_PREFIX,
        skip_cache: bool = False,
    ) -> T:
        """Return the cached result of ``query_fn`` or run and cache it.

        Args:
            sql: Query text (only used to derive the key).
            params: Positional list, list of ``{"name", "value"}`` dicts or mapping.
            query_fn: Async callable executing the query.
            ttl: Time-to-live for the stored result.
            prefix: Key namespace, used later for pattern invalidation.
            skip_cache: Run ``query_fn`` directly, bypassing the cache.
        """

        if skip_cache:
            logger.debug("query_cache.skip", extra={"prefix": prefix})
            return await query_fn()

        key = build_query_key(sql, params, prefix)
        return await self._cache.get_or_set(key, query_fn, ttl)

    async def with_item_cache(
        self, sql: str, params: QueryParams, query_fn: QueryFn[T], ttl: int | None = None
    ) -> T:
        return await self.with_cache(sql, params, query_fn, ttl=ttl or ENTITY_TTL["item"], prefix="item")

    async def with_family_cache(
        self, sql: str, params: QueryParams, query_fn: QueryFn[T], ttl: int | None = None
    ) -> T:
        return await self.with_cache(
            sql, params, query_fn, ttl=ttl or ENTITY_TTL["family"], prefix="family"
        )

    async def with_establishment_cache(
        self, sql: str, params: QueryParams, query_fn: QueryFn[T], ttl: int | None = None
    ) -> T:
        return await self.with_cache(
            sql, params, query_fn, ttl=ttl or ENTITY_TTL["establishment"], prefix="establishment"
        )

    async def with_health_cache(self, sql: str, params: QueryParams, query_fn: QueryFn[T]) -> T:
        return await self.with_cache(sql, params, query_fn, ttl=ENTITY_TTL["health"], prefix="health")

    async def invalidate(self, pattern: str) -> int:
        logger.info("query_cache.invalidate", extra={"pattern": pattern})
        return await self._cache.invalidate(pattern)

    async def invalidate_many(self, patterns: Iterable[str]) -> int:
        total = 0
        for pattern in patterns:
            total += await self.invalidate(pattern)
        return total
