"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiting adapters into the HTTP layer.

- One per-user limiter and one per-address limiter per application, built
  at startup and stored on ``app.state``.
- Authenticated callers are limited per user across minute, hour and day
  windows according to their tier.
- If no user is resolved (auth disabled), fall back to the client IP with
  a single fixed window.
- Allowed responses carry the tightest window's budget in
  ``X-RateLimit-*`` headers; denials raise ``RateLimitExceededError``,
  rendered as 429 with ``Retry-After`` by the exception handlers.
"""

from __future__ import annotations

import hashlib
import logging
import math
from typing import Annotated

from fastapi import Depends, Request, Response

from erp_gateway.adapters.rate_limit.base import (
    AbstractRateLimiter,
    AbstractUserRateLimiter,
    RateLimitResult,
    TierLimits,
    UserTier,
)
from erp_gateway.adapters.rate_limit.in_memory import FixedWindowRateLimiter, UserRateLimiter
from erp_gateway.core.auth import AuthenticatedUser, verify_api_key
from erp_gateway.core.config import RateLimitSettings, settings
from erp_gateway.core.errors import RateLimitExceededError, ValidationAppError

logger = logging.getLogger(__name__)


def build_tier_table(rate_limit_settings: RateLimitSettings) -> dict[UserTier, TierLimits]:
    """Convert configured tier limits into the limiter's tier table.

    Raises:
        ValidationAppError: If the table names an unknown tier or misses one.
    """

    table: dict[UserTier, TierLimits] = {}
    for name, limits in rate_limit_settings.tiers.items():
        try:
            tier = UserTier(name.strip().lower())
        except ValueError as exc:
            raise ValidationAppError(
                code="rate_limit_unknown_tier",
                message=f"Unknown tier in rate limit configuration: '{name}'",
            ) from exc
        table[tier] = TierLimits(
            per_minute=limits.per_minute,
            per_hour=limits.per_hour,
            per_day=limits.per_day,
        )

    missing = [tier.value for tier in UserTier if tier not in table]
    if missing:
        raise ValidationAppError(
            code="rate_limit_missing_tier",
            message="Rate limit configuration is missing tiers: " + ", ".join(missing),
        )
    return table


def build_user_rate_limiter(rate_limit_settings: RateLimitSettings | None = None) -> UserRateLimiter:
    cfg = rate_limit_settings or settings.rate_limit
    return UserRateLimiter(
        build_tier_table(cfg),
        cleanup_interval_seconds=cfg.cleanup_interval_seconds,
    )


def build_ip_rate_limiter(rate_limit_settings: RateLimitSettings | None = None) -> FixedWindowRateLimiter:
    cfg = rate_limit_settings or settings.rate_limit
    return FixedWindowRateLimiter(
        limit=cfg.anonymous_limit,
        window_seconds=cfg.anonymous_window_seconds,
        cleanup_interval_seconds=cfg.cleanup_interval_seconds,
    )


def get_rate_limiter(request: Request) -> AbstractUserRateLimiter:
    """Return the application's per-user limiter."""
    return request.app.state.rate_limiter


def get_ip_rate_limiter(request: Request) -> AbstractRateLimiter:
    return request.app.state.ip_rate_limiter


def _client_key(request: Request) -> str:
    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


def _hash_limiter_key(key: str) -> str:
    """Hash the rate limit key for logging without exposing addresses."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(int(math.ceil(result.reset_at))),
    }
    if not result.allowed:
        headers["Retry-After"] = str(result.retry_after_seconds or 0)
    return headers


async def enforce_user_rate_limit(
    request: Request,
    response: Response,
    user: Annotated[AuthenticatedUser | None, Depends(verify_api_key)],
    limiter: Annotated[AbstractUserRateLimiter, Depends(get_rate_limiter)],
    ip_limiter: Annotated[AbstractRateLimiter, Depends(get_ip_rate_limiter)],
) -> None:
    """FastAPI dependency consuming one request from the caller's budget.

    Raises:
        RateLimitExceededError: When the user's windows (or, for anonymous
            callers, the client address window) are exhausted.
    """

    if not settings.rate_limit.enabled:
        return

    if user is None:
        key = _client_key(request)
        result = ip_limiter.consume(key)
        context = {"key_type": "ip", "key_hash": _hash_limiter_key(key)}
        details: dict[str, object] = {"scope": "ip"}
        message = "Rate limit exceeded. Try again later."
    else:
        result = limiter.check(user.user_id, user.tier)
        context = {"key_type": "user", "user_id": user.user_id, "tier": user.tier.value}
        details = {"scope": "user", "tier": user.tier.value}
        message = f"Rate limit exceeded for the {result.window.value} window. Try again later."

    if result.allowed:
        logger.debug(
            "rate_limit.allowed",
            extra={**context, "limit": result.limit, "remaining": result.remaining},
        )
        if settings.rate_limit.include_headers:
            response.headers.update(rate_limit_headers(result))
        return

    if user is None:
        logger.warning(
            "rate_limit.exceeded",
            extra={**context, "limit": result.limit, "retry_after_s": result.retry_after_seconds},
        )

    raise RateLimitExceededError(
        code="rate_limit_exceeded",
        message=message,
        details={
            **details,
            "limit": result.limit,
            "remaining": result.remaining,
            "reset_at": result.reset_at,
            "retry_after": result.retry_after_seconds or 0,
        },
        result=result,
    )
