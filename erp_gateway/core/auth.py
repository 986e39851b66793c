"""API Key authentication logic.

Keys are validated against a comma-separated list from environment
variables. Each entry also carries the identity the rate limiter needs:

    APP_API_KEYS="k-alice:alice:premium,k-ops:ops:admin,k-anon"

- ``key`` alone: user_id is the key's hash prefix, tier is ``free``.
- ``key:user_id``: tier is ``free``.
- ``key:user_id:tier``: fully specified.

Key issuance is out of scope; this module validates only.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header

from erp_gateway.adapters.rate_limit.base import UserTier
from erp_gateway.core.config import settings
from erp_gateway.core.errors import AuthenticationAppError, ValidationAppError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity resolved from an API key."""

    user_id: str
    tier: UserTier


def _hash_key(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def parse_api_keys(keys_string: str | None) -> dict[str, AuthenticatedUser]:
    """Parse configured API key entries into a key -> user mapping.

    Args:
        keys_string: Comma-separated ``key[:user_id[:tier]]`` entries, or None.

    Returns:
        Mapping of API key to the user it authenticates.

    Raises:
        ValidationAppError: If an entry names an unknown tier.

    Examples:
        >>> parse_api_keys("k1:alice:premium")["k1"].tier
        <UserTier.PREMIUM: 'premium'>
        >>> parse_api_keys(None)
        {}
    """
    if not keys_string:
        return {}

    users: dict[str, AuthenticatedUser] = {}
    for entry in keys_string.split(","):
        parts = [part.strip() for part in entry.split(":")]
        key = parts[0] if parts else ""
        if not key:
            continue

        user_id = parts[1] if len(parts) > 1 and parts[1] else f"key-{_hash_key(key)}"
        tier_name = parts[2].lower() if len(parts) > 2 and parts[2] else UserTier.FREE.value
        try:
            tier = UserTier(tier_name)
        except ValueError as exc:
            raise ValidationAppError(
                code="invalid_api_key_config",
                message=f"Unknown tier '{tier_name}' in API key configuration",
                details={"hint": "Use one of: " + ", ".join(t.value for t in UserTier)},
            ) from exc

        users[key] = AuthenticatedUser(user_id=user_id, tier=tier)
    return users


def validate_api_key(provided_key: str) -> AuthenticatedUser:
    """Resolve ``provided_key`` to its user.

    Raises:
        AuthenticationAppError: If the key is unknown or no keys are configured.
    """
    users = parse_api_keys(settings.app.api_keys)

    if not users:
        logger.error(
            "api_key_validation_failed",
            extra={
                "reason": "api_keys_not_configured",
                "auth_required": settings.app.api_key_required,
            },
        )
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="API key authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_API_KEYS or disable auth with APP_API_KEY_REQUIRED=false"},
        )

    user = users.get(provided_key)
    if user is None:
        logger.warning(
            "api_key_validation_failed",
            extra={
                "reason": "invalid_api_key",
                "api_key_hash": _hash_key(provided_key),
            },
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )
    return user


async def verify_api_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> AuthenticatedUser | None:
    """FastAPI dependency for API key authentication.

    Returns the authenticated user, or None when authentication is disabled
    (``APP_API_KEY_REQUIRED=false``), in which case requests are anonymous.

    Raises:
        AuthenticationAppError: 403 if the key is missing or invalid.
    """
    if not settings.app.api_key_required:
        logger.debug("auth.skipped", extra={"reason": "auth_required_false"})
        return None

    if not x_api_key:
        logger.warning("auth.missing_key", extra={"api_key_present": False})
        raise AuthenticationAppError(
            code="missing_api_key",
            message="Missing API key. Provide X-API-Key header.",
        )

    user = validate_api_key(x_api_key)
    logger.info(
        "auth.success",
        extra={
            "api_key_hash": _hash_key(x_api_key),
            "user_id": user.user_id,
            "tier": user.tier.value,
        },
    )
    return user


async def require_admin(
    user: Annotated[AuthenticatedUser | None, Depends(verify_api_key)],
) -> AuthenticatedUser | None:
    """Allow only admin-tier users (or anyone when auth is disabled)."""
    if user is not None and user.tier is not UserTier.ADMIN:
        logger.warning(
            "auth.forbidden",
            extra={"user_id": user.user_id, "tier": user.tier.value, "required_tier": "admin"},
        )
        raise AuthenticationAppError(
            code="admin_required",
            message="This operation requires the admin tier",
        )
    return user
