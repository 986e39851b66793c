"""Integration tests for the application: health and admin endpoints."""

import pytest
from fastapi.testclient import TestClient

from erp_gateway.adapters.rate_limit.base import UserTier
from erp_gateway.core.app_factory import create_app
from erp_gateway.services.query_cache import QueryCacheService, build_query_key

ADMIN = {"X-API-Key": "test-admin-key"}
FREE = {"X-API-Key": "test-free-key"}


@pytest.fixture
def client():
    with TestClient(create_app()) as test_client:
        yield test_client


def _cache(client: TestClient):
    return client.app.state.cache


def test_health_reports_cache_state(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "cache": {"enabled": True, "strategy": "memory", "ready": True},
    }


def test_health_is_served_from_cache(client) -> None:
    first = client.get("/health")
    second = client.get("/health")

    assert first.headers["X-Cache"] == "MISS"
    assert second.headers["X-Cache"] == "HIT"
    assert second.headers["X-Cache-Key"] == "GET:/health"
    assert second.json() == first.json()


def test_admin_routes_require_admin_tier(client) -> None:
    assert client.get("/v1/admin/cache/stats").status_code == 403
    assert client.get("/v1/admin/cache/stats", headers=FREE).status_code == 403
    assert client.get("/v1/admin/cache/stats", headers=ADMIN).status_code == 200


def test_admin_requests_are_rate_limited_with_headers(client) -> None:
    response = client.get("/v1/admin/cache/stats", headers=ADMIN)

    assert response.headers["X-RateLimit-Limit"] == "1000"
    assert response.headers["X-RateLimit-Remaining"] == "999"


def test_cache_stats_and_invalidate(client) -> None:
    cache = _cache(client)
    client.portal.call(cache.set, "item:1", {"code": "A1"})
    client.portal.call(cache.set, "item:2", {"code": "A2"})
    client.portal.call(cache.set, "family:9", {"code": "F9"})
    client.portal.call(cache.get, "item:1")

    stats = client.get("/v1/admin/cache/stats", headers=ADMIN).json()
    assert stats["enabled"] is True
    assert stats["strategy"] == "memory"
    assert stats["hits"] == 1
    assert stats["keys"] == 3

    response = client.post("/v1/admin/cache/invalidate", json={"pattern": "item:*"}, headers=ADMIN)
    assert response.status_code == 200
    assert response.json() == {"pattern": "item:*", "removed": 2}
    assert client.portal.call(cache.keys) == ["family:9"]


def test_app_shares_one_query_cache_over_the_facade(client) -> None:
    query_cache = client.app.state.query_cache

    assert isinstance(query_cache, QueryCacheService)

    async def load_item():
        return {"code": "A1"}

    client.portal.call(query_cache.with_item_cache, "SELECT * FROM item WHERE code = ?", ["A1"], load_item)

    key = build_query_key("SELECT * FROM item WHERE code = ?", ["A1"], prefix="item")
    assert client.portal.call(_cache(client).get, key) == {"code": "A1"}


def test_invalidate_entities_drops_cached_queries(client) -> None:
    query_cache = client.app.state.query_cache

    async def load():
        return [1]

    client.portal.call(query_cache.with_item_cache, "SELECT 1", None, load)
    client.portal.call(query_cache.with_item_cache, "SELECT 2", None, load)
    client.portal.call(query_cache.with_family_cache, "SELECT 3", None, load)

    response = client.post(
        "/v1/admin/cache/invalidate-entities",
        json={"entities": ["item", "item"]},
        headers=ADMIN,
    )

    assert response.status_code == 200
    assert response.json() == {"entities": ["item"], "removed": 2}
    assert [key.split(":")[0] for key in client.portal.call(_cache(client).keys)] == ["family"]


def test_invalidate_entities_rejects_unknown_entity(client) -> None:
    response = client.post(
        "/v1/admin/cache/invalidate-entities", json={"entities": ["invoice"]}, headers=ADMIN
    )

    assert response.status_code == 422


def test_invalidate_rejects_empty_pattern(client) -> None:
    response = client.post("/v1/admin/cache/invalidate", json={"pattern": ""}, headers=ADMIN)

    assert response.status_code == 422


def test_flush_cache(client) -> None:
    cache = _cache(client)
    client.portal.call(cache.set, "item:1", 1)

    response = client.delete("/v1/admin/cache", headers=ADMIN)

    assert response.status_code == 200
    assert response.json() == {"flushed": True}
    assert client.portal.call(cache.keys) == []


def test_rate_limit_stats_aggregate_and_per_user(client) -> None:
    limiter = client.app.state.rate_limiter
    limiter.check("alice", UserTier.FREE)

    aggregate = client.get("/v1/admin/rate-limit/stats", headers=ADMIN).json()
    # The admin's own request is tracked too
    assert aggregate["total_users"] == 2
    assert aggregate["by_tier"]["free"] == 1
    assert aggregate["by_tier"]["admin"] == 1

    per_user = client.get("/v1/admin/rate-limit/stats", params={"user_id": "alice"}, headers=ADMIN)
    assert per_user.status_code == 200
    body = per_user.json()
    assert body["user_id"] == "alice"
    assert body["usage"]["minute"] == {
        "current": 1,
        "limit": 10,
        "remaining": 9,
        "reset_at": body["usage"]["minute"]["reset_at"],
    }


def test_rate_limit_stats_for_untracked_user(client) -> None:
    response = client.get("/v1/admin/rate-limit/stats", params={"user_id": "ghost"}, headers=ADMIN)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "rate_limit_user_not_tracked"


def test_reset_user(client) -> None:
    limiter = client.app.state.rate_limiter
    limiter.check("alice", UserTier.FREE)

    response = client.delete("/v1/admin/rate-limit/users/alice", headers=ADMIN)
    assert response.json() == {"user_id": "alice", "reset": True}
    assert limiter.get_stats("alice") is None

    again = client.delete("/v1/admin/rate-limit/users/alice", headers=ADMIN)
    assert again.json() == {"user_id": "alice", "reset": False}


def test_lifespan_closes_cache() -> None:
    app = create_app()
    with TestClient(app):
        assert app.state.cache.enabled is True

    assert app.state.cache.enabled is False
    assert app.state.cache.adapter is None
    assert app.state.ip_rate_limiter._cleanup_task.running is False
