"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Static type checkers treat fields as constructor arguments, which is not
    how BaseSettings is meant to be used, hence the type ignore.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_cache_settings() -> "CacheSettings":
    return CacheSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> "RateLimitSettings":
    return RateLimitSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether API key authentication is required",
    )
    api_keys: str | None = Field(
        None,
        description=(
            "Comma-separated list of 'key:user_id:tier' entries. Tier defaults "
            "to 'free' and user_id to the key itself when omitted."
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class CacheSettings(BaseSettings):
    """Cache layer configuration (read once at startup)."""

    enabled: bool = Field(
        True,
        description="Disable to turn every cache read into a miss and every write into a no-op",
    )
    strategy: str = Field(
        "memory",
        description="Storage strategy: memory, distributed or layered",
    )
    default_ttl: int = Field(
        300,
        description="Default time-to-live in seconds when a write omits one",
        ge=1,
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Connection URL for the distributed tier",
    )
    memory_check_period: float = Field(
        120.0,
        description="Interval in seconds of the in-process expiry sweep",
        gt=0,
    )
    redis_max_retries: int = Field(
        3,
        description="Maximum retries per distributed-tier request",
        ge=0,
    )
    redis_scan_count: int = Field(
        100,
        description="COUNT hint for each SCAN page",
        ge=1,
    )
    health_ttl: int = Field(
        30,
        description="Seconds a GET /health response is served from cache",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
    )


class TierLimitsConfig(BaseModel):
    """Request budget for one subscription tier."""

    per_minute: int = Field(..., ge=1)
    per_hour: int = Field(..., ge=1)
    per_day: int = Field(..., ge=1)


def _default_tier_table() -> dict[str, TierLimitsConfig]:
    return {
        "free": TierLimitsConfig(per_minute=10, per_hour=100, per_day=1000),
        "premium": TierLimitsConfig(per_minute=60, per_hour=1000, per_day=10000),
        "enterprise": TierLimitsConfig(per_minute=300, per_hour=10000, per_day=100000),
        "admin": TierLimitsConfig(per_minute=1000, per_hour=50000, per_day=1000000),
    }


class RateLimitSettings(BaseSettings):
    """Per-user rate limiting configuration."""

    enabled: bool = Field(
        True,
        description="Enable per-user multi-window rate limiting",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers",
    )
    cleanup_interval_seconds: float = Field(
        3600.0,
        description="Interval of the background sweep removing stale user records",
        gt=0,
    )
    tiers: dict[str, TierLimitsConfig] = Field(
        default_factory=_default_tier_table,
        description="Tier table as JSON, e.g. {\"free\": {\"per_minute\": 10, ...}}",
    )
    anonymous_limit: int = Field(
        100,
        description="Requests allowed per client address when no API key identifies the caller",
        ge=1,
    )
    anonymous_window_seconds: int = Field(
        900,
        description="Fixed window size in seconds for anonymous callers",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="json or plain")
    output: str = Field("stdout", description="stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10_485_760, description="Rotate after this many bytes (0 disables)")
    backup_count: int = Field(5, description="Rotated files to keep")
    request_id_header: str = Field("X-Request-ID", description="Correlation header name")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    cache: CacheSettings = Field(default_factory=_build_cache_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
