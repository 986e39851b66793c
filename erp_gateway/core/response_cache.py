"""HTTP response caching through the cache facade.

Two FastAPI dependencies:

- ``ResponseCache(ttl)``: GET handlers serve their body through
  ``CachedResponse.serve``. A stored body is returned as is (``X-Cache: HIT``);
  otherwise the handler's compute function runs and a 200 body is stored
  (``X-Cache: MISS``). ``X-Cache-Key`` names the entry either way.
- ``InvalidateCacheOnSuccess(pattern)``: after a mutation completes without
  error, deletes every cached key matching ``pattern``.

Keys are ``<METHOD>:<path>[:<sorted query>]``, so ``GET:/v1/items*``
invalidates a route's entries for every query string.
"""

import logging
from typing import Annotated, Any, Awaitable, Callable

from fastapi import BackgroundTasks, Depends, Request, Response
from fastapi.encoders import jsonable_encoder

from erp_gateway.core.dependencies import get_cache_manager
from erp_gateway.services.cache_manager import CacheManager, build_cache_key

logger = logging.getLogger(__name__)

# TTL presets in seconds
PRESET_TTL = {
    "short": 60,
    "medium": 300,
    "long": 900,
}

CacheDep = Annotated[CacheManager, Depends(get_cache_manager)]


def build_response_cache_key(request: Request) -> str:
    """Build the cache key for a request from its method, path and query.

    Examples:
        GET /v1/items?b=2&a=1 -> ``GET:/v1/items:a=1&b=2``
    """

    query = "&".join(f"{key}={value}" for key, value in sorted(request.query_params.multi_items()))
    return build_cache_key(request.method, request.url.path, query or None)


class CachedResponse:
    """Per-request handle bound to one cache key."""

    def __init__(
        self,
        cache: CacheManager,
        response: Response,
        key: str | None,
        ttl: int,
    ) -> None:
        self._cache = cache
        self._response = response
        self.key = key
        self._ttl = ttl

    async def serve(self, compute: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached body for this request or compute and store it.

        Errors raised by ``compute`` propagate and nothing is stored.
        """

        if self.key is None:
            return await compute()

        cached = await self._cache.get(self.key)
        if isinstance(cached, dict) and "body" in cached:
            logger.debug("http_cache.hit", extra={"cache_key": self.key})
            self._mark("HIT")
            return cached["body"]

        logger.debug("http_cache.miss", extra={"cache_key": self.key})
        body = await compute()

        # Handlers that set another status explicitly are not cached
        if self._response.status_code in (None, 200):
            entry = {"status_code": 200, "body": jsonable_encoder(body)}
            if await self._cache.set(self.key, entry, self._ttl):
                logger.debug("http_cache.stored", extra={"cache_key": self.key, "ttl": self._ttl})
        self._mark("MISS")
        return body

    def _mark(self, outcome: str) -> None:
        self._response.headers["X-Cache"] = outcome
        self._response.headers["X-Cache-Key"] = self.key or ""


class ResponseCache:
    """Dependency caching GET responses for ``ttl`` seconds."""

    def __init__(self, ttl: int = PRESET_TTL["medium"]) -> None:
        if ttl < 1:
            raise ValueError("ttl must be >= 1")
        self.ttl = ttl

    @classmethod
    def preset(cls, name: str) -> "ResponseCache":
        return cls(PRESET_TTL[name])

    async def __call__(self, request: Request, response: Response, cache: CacheDep) -> CachedResponse:
        # Only GET responses are cached
        key = build_response_cache_key(request) if request.method == "GET" else None
        return CachedResponse(cache, response, key, self.ttl)


class InvalidateCacheOnSuccess:
    """Dependency invalidating ``pattern`` once a mutation has succeeded.

    ``pattern`` is a string or a callable deriving it from the request (for
    example from a path parameter). Invalidation runs after the response is
    sent and only when the handler returned normally with a 2xx status.
    """

    def __init__(self, pattern: str | Callable[[Request], str]) -> None:
        self._pattern = pattern

    async def __call__(
        self,
        request: Request,
        response: Response,
        background_tasks: BackgroundTasks,
        cache: CacheDep,
    ) -> None:
        pattern = self._pattern(request) if callable(self._pattern) else self._pattern
        background_tasks.add_task(self._invalidate, cache, response, pattern, request)

    @staticmethod
    async def _invalidate(cache: CacheManager, response: Response, pattern: str, request: Request) -> None:
        status_code = response.status_code
        if status_code is not None and not 200 <= status_code < 300:
            return

        removed = await cache.invalidate(pattern)
        if removed:
            logger.info(
                "http_cache.invalidated",
                extra={
                    "pattern": pattern,
                    "removed": removed,
                    "method": request.method,
                    "path": request.url.path,
                },
            )
