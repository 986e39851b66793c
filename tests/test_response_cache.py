"""Tests for HTTP response caching and mutation-driven invalidation."""

from typing import Annotated

import pytest
from fastapi import Depends, FastAPI, Request, Response
from fastapi.testclient import TestClient

from erp_gateway.adapters.cache.memory import MemoryCacheAdapter
from erp_gateway.core.config import CacheSettings
from erp_gateway.core.errors import ValidationAppError
from erp_gateway.core.exception_handlers import setup_exception_handlers
from erp_gateway.core.response_cache import (
    CachedResponse,
    InvalidateCacheOnSuccess,
    ResponseCache,
)
from erp_gateway.services.cache_manager import CacheManager


def _memory_factory(strategy: str, cache_settings: CacheSettings) -> MemoryCacheAdapter:
    return MemoryCacheAdapter(cache_settings.default_ttl, "Cache-Memory", check_period=None)


def _item_pattern(request: Request) -> str:
    return f"GET:/items/{request.path_params['code']}*"


@pytest.fixture
def loads() -> list[str]:
    return []


@pytest.fixture
def app(loads) -> FastAPI:
    app = FastAPI()
    setup_exception_handlers(app)
    app.state.cache = CacheManager(
        CacheSettings(enabled=True, strategy="memory", default_ttl=300),
        adapter_factory=_memory_factory,
    )
    items_cache = ResponseCache(ttl=60)
    Cached = Annotated[CachedResponse, Depends(items_cache)]

    @app.get("/items")
    async def list_items(cached: Cached, family: str | None = None):
        async def load():
            loads.append(f"list:{family}")
            return {"items": ["A1", "B2"], "family": family}

        return await cached.serve(load)

    @app.get("/items/{code}")
    async def get_item(code: str, cached: Cached):
        async def load():
            loads.append(code)
            if code == "broken":
                raise ValidationAppError(code="invalid_item", message="Unknown item")
            return {"code": code}

        return await cached.serve(load)

    @app.get("/pending")
    async def pending(cached: Cached, response: Response):
        async def load():
            loads.append("pending")
            response.status_code = 202
            return {"status": "pending"}

        return await cached.serve(load)

    @app.post("/items", dependencies=[Depends(InvalidateCacheOnSuccess("GET:/items*"))])
    async def create_item():
        return {"created": True}

    @app.post("/rejected", dependencies=[Depends(InvalidateCacheOnSuccess("GET:/items*"))])
    async def rejected_mutation():
        raise ValidationAppError(code="invalid_item", message="Rejected")

    @app.put("/items/{code}", dependencies=[Depends(InvalidateCacheOnSuccess(_item_pattern))])
    async def update_item(code: str):
        return {"code": code, "updated": True}

    return app


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        test_client.portal.call(app.state.cache.initialize)
        yield test_client
        test_client.portal.call(app.state.cache.close)


def test_second_get_is_served_from_cache(client, loads) -> None:
    first = client.get("/items")
    second = client.get("/items")

    assert first.headers["X-Cache"] == "MISS"
    assert second.headers["X-Cache"] == "HIT"
    assert first.headers["X-Cache-Key"] == second.headers["X-Cache-Key"] == "GET:/items"
    assert second.json() == first.json() == {"items": ["A1", "B2"], "family": None}
    assert loads == ["list:None"]


def test_query_string_is_part_of_the_key_in_sorted_order(client, loads) -> None:
    first = client.get("/items", params=[("family", "F1"), ("a", "1")])
    reordered = client.get("/items?a=1&family=F1")
    other = client.get("/items", params={"family": "F2"})

    assert first.headers["X-Cache-Key"] == "GET:/items:a=1&family=F1"
    assert reordered.headers["X-Cache"] == "HIT"
    assert other.headers["X-Cache"] == "MISS"
    assert loads == ["list:F1", "list:F2"]


def test_only_200_responses_are_stored(client, loads) -> None:
    first = client.get("/pending")
    second = client.get("/pending")

    assert first.status_code == second.status_code == 202
    assert second.headers["X-Cache"] == "MISS"
    assert loads == ["pending", "pending"]


def test_errors_are_not_cached(client, loads) -> None:
    assert client.get("/items/broken").status_code == 400
    assert client.get("/items/broken").status_code == 400

    assert loads == ["broken", "broken"]
    assert client.portal.call(client.app.state.cache.keys) == []


def test_successful_mutation_invalidates_pattern(client, loads) -> None:
    client.get("/items")
    client.get("/items/A1")

    assert client.post("/items").status_code == 200

    assert client.portal.call(client.app.state.cache.keys) == []
    assert client.get("/items").headers["X-Cache"] == "MISS"


def test_failed_mutation_keeps_cache(client) -> None:
    client.get("/items")

    assert client.post("/rejected").status_code == 400

    assert client.get("/items").headers["X-Cache"] == "HIT"


def test_pattern_can_be_derived_from_request(client) -> None:
    client.get("/items/A1")
    client.get("/items/B2")

    client.put("/items/A1")

    assert client.get("/items/A1").headers["X-Cache"] == "MISS"
    assert client.get("/items/B2").headers["X-Cache"] == "HIT"


def test_ttl_must_be_positive_and_presets_resolve() -> None:
    with pytest.raises(ValueError):
        ResponseCache(ttl=0)

    assert ResponseCache.preset("short").ttl == 60
    assert ResponseCache.preset("long").ttl == 900
