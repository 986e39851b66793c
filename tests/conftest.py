"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any ``erp_gateway`` import so the
global settings object is built from the test configuration.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault(
    "APP_API_KEYS",
    "test-admin-key:ops:admin,test-free-key:alice:free,test-premium-key:bob:premium",
)
os.environ.setdefault("CACHE_ENABLED", "true")
os.environ.setdefault("CACHE_STRATEGY", "memory")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402


class FakeTime:
    """Deterministic clock used to test expiration and window logic."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()
