"""Unit tests for API key authentication module."""

from unittest.mock import patch

import pytest

from erp_gateway.adapters.rate_limit.base import UserTier
from erp_gateway.core.auth import (
    AuthenticatedUser,
    parse_api_keys,
    require_admin,
    validate_api_key,
    verify_api_key,
)
from erp_gateway.core.errors import AuthenticationAppError, ValidationAppError


class TestParseAPIKeys:
    """Test API key parsing utility function."""

    def test_parse_full_entry(self) -> None:
        result = parse_api_keys("k1:alice:premium")
        assert result == {"k1": AuthenticatedUser(user_id="alice", tier=UserTier.PREMIUM)}

    def test_parse_multiple_entries_with_whitespace(self) -> None:
        result = parse_api_keys(" k1 : alice : admin ,k2:bob")
        assert result["k1"] == AuthenticatedUser("alice", UserTier.ADMIN)
        assert result["k2"] == AuthenticatedUser("bob", UserTier.FREE)

    def test_bare_key_gets_derived_user_and_free_tier(self) -> None:
        user = parse_api_keys("lonely-key")["lonely-key"]
        assert user.user_id.startswith("key-")
        assert "lonely-key" not in user.user_id
        assert user.tier is UserTier.FREE

    def test_tier_is_case_insensitive(self) -> None:
        assert parse_api_keys("k:u:ENTERPRISE")["k"].tier is UserTier.ENTERPRISE

    def test_parse_none_or_blank_returns_empty(self) -> None:
        assert parse_api_keys(None) == {}
        assert parse_api_keys("") == {}
        assert parse_api_keys("   ,  ,  ") == {}

    def test_unknown_tier_is_a_configuration_error(self) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            parse_api_keys("k:u:platinum")
        assert exc_info.value.code == "invalid_api_key_config"


class TestValidateAPIKey:
    """Test core API key validation logic."""

    @patch("erp_gateway.core.auth.settings")
    def test_raises_when_no_keys_configured(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = None

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key("some-key")

        assert exc_info.value.code == "api_keys_not_configured"

    @patch("erp_gateway.core.auth.settings")
    def test_returns_user_for_valid_key(self, mock_settings) -> None:
        mock_settings.app.api_keys = "k1:alice:free,k2:ops:admin"

        assert validate_api_key("k2") == AuthenticatedUser("ops", UserTier.ADMIN)

    @patch("erp_gateway.core.auth.settings")
    def test_rejects_invalid_key(self, mock_settings) -> None:
        mock_settings.app.api_keys = "k1:alice:free"

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key("k9")

        assert exc_info.value.code == "invalid_api_key"


class TestVerifyAPIKeyDependency:
    """Test the FastAPI dependency."""

    @pytest.mark.asyncio
    @patch("erp_gateway.core.auth.settings")
    async def test_returns_none_when_auth_disabled(self, mock_settings) -> None:
        mock_settings.app.api_key_required = False

        assert await verify_api_key(x_api_key=None) is None
        assert await verify_api_key(x_api_key="whatever") is None

    @pytest.mark.asyncio
    @patch("erp_gateway.core.auth.settings")
    async def test_missing_key_raises(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True

        with pytest.raises(AuthenticationAppError) as exc_info:
            await verify_api_key(x_api_key=None)

        assert exc_info.value.code == "missing_api_key"

    @pytest.mark.asyncio
    @patch("erp_gateway.core.auth.settings")
    async def test_valid_key_resolves_user(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "k1:alice:premium"

        user = await verify_api_key(x_api_key="k1")

        assert user == AuthenticatedUser("alice", UserTier.PREMIUM)


class TestRequireAdmin:
    @pytest.mark.asyncio
    async def test_admin_passes(self) -> None:
        admin = AuthenticatedUser("ops", UserTier.ADMIN)
        assert await require_admin(admin) is admin

    @pytest.mark.asyncio
    async def test_anonymous_passes_when_auth_disabled(self) -> None:
        assert await require_admin(None) is None

    @pytest.mark.asyncio
    async def test_other_tiers_are_forbidden(self) -> None:
        with pytest.raises(AuthenticationAppError) as exc_info:
            await require_admin(AuthenticatedUser("alice", UserTier.ENTERPRISE))

        assert exc_info.value.code == "admin_required"
