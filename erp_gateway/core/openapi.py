"""OpenAPI customization.

Adds the ``X-API-Key`` security scheme (health exempt), tag descriptions and
documents the rate limit headers and 429 response on every limited route.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_TAGS = [
    {"name": "Admin", "description": "Cache and rate limit administration (admin tier only)."},
    {"name": "Health", "description": "Liveness and cache readiness."},
]

_RATE_LIMIT_HEADERS = {
    "X-RateLimit-Limit": {"description": "Budget of the tightest window", "schema": {"type": "integer"}},
    "X-RateLimit-Remaining": {"description": "Requests left in that window", "schema": {"type": "integer"}},
    "X-RateLimit-Reset": {"description": "UNIX time when that window resets", "schema": {"type": "integer"}},
}

_TOO_MANY_REQUESTS = {
    "description": "Rate limit exceeded for one of the minute, hour or day windows (or the client address window for anonymous callers)",
    "headers": {
        "Retry-After": {"description": "Seconds until the blocking window resets", "schema": {"type": "integer"}},
        **_RATE_LIMIT_HEADERS,
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema
        schema = original_openapi()

        security_schemes = schema.setdefault("components", {}).setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {"type": "apiKey", "in": "header", "name": "X-API-Key"},
        )
        schema.setdefault("security", [{"ApiKeyAuth": []}])

        tags = schema.setdefault("tags", [])
        existing = {t.get("name") for t in tags}
        tags.extend(t for t in _TAGS if t["name"] not in existing)

        for path, methods in schema.get("paths", {}).items():
            for operation in methods.values():
                if not isinstance(operation, dict):
                    continue
                if path.endswith("/health"):
                    operation["security"] = []
                    continue
                responses = operation.setdefault("responses", {})
                responses.setdefault("429", _TOO_MANY_REQUESTS)
                ok = responses.get("200")
                if isinstance(ok, dict):
                    ok.setdefault("headers", dict(_RATE_LIMIT_HEADERS))

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
