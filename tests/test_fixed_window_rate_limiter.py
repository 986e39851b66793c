"""Unit tests for the per-key fixed-window limiter used for anonymous callers."""

from unittest.mock import Mock

import pytest

from erp_gateway.adapters.rate_limit.in_memory import FixedWindowRateLimiter


def test_allows_up_to_limit_in_same_window() -> None:
    clock = Mock(return_value=1000.0)
    limiter = FixedWindowRateLimiter(limit=3, window_seconds=60, clock=clock)

    assert limiter.consume("ip:10.0.0.1").allowed is True
    assert limiter.consume("ip:10.0.0.1").allowed is True
    result = limiter.consume("ip:10.0.0.1")
    assert result.allowed is True
    assert result.remaining == 0
    assert result.window is None


def test_blocks_when_over_limit_until_aligned_reset() -> None:
    clock = Mock(return_value=1000.0)
    limiter = FixedWindowRateLimiter(limit=2, window_seconds=900, clock=clock)

    limiter.consume("ip:10.0.0.1")
    limiter.consume("ip:10.0.0.1")
    blocked = limiter.consume("ip:10.0.0.1")

    # 1000 falls in the window [900, 1800)
    assert blocked.allowed is False
    assert blocked.remaining == 0
    assert blocked.reset_at == 1800
    assert blocked.retry_after_seconds == 800


def test_resets_on_new_window() -> None:
    clock = Mock(return_value=1000.0)
    limiter = FixedWindowRateLimiter(limit=1, window_seconds=10, clock=clock)

    assert limiter.consume("k").allowed is True
    assert limiter.consume("k").allowed is False

    clock.return_value = 1010.0
    assert limiter.consume("k").allowed is True


def test_isolated_by_key() -> None:
    clock = Mock(return_value=1000.0)
    limiter = FixedWindowRateLimiter(limit=1, window_seconds=60, clock=clock)

    assert limiter.consume("ip:a").allowed is True
    assert limiter.consume("ip:a").allowed is False
    assert limiter.consume("ip:b").allowed is True


def test_cleanup_drops_keys_from_past_windows() -> None:
    clock = Mock(return_value=1000.0)
    limiter = FixedWindowRateLimiter(limit=1, window_seconds=60, clock=clock)
    limiter.consume("ip:old")

    clock.return_value = 1060.0
    limiter.consume("ip:new")

    assert limiter.cleanup() == 1
    # The current window's budget survives cleanup
    assert limiter.consume("ip:new").allowed is False


@pytest.mark.parametrize(
    "kwargs",
    [
        {"limit": 0, "window_seconds": 60},
        {"limit": 1, "window_seconds": 0},
    ],
)
def test_invalid_constructor_args(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        FixedWindowRateLimiter(**kwargs)


def test_invalid_consume_args() -> None:
    limiter = FixedWindowRateLimiter(limit=1, window_seconds=60)

    with pytest.raises(ValueError):
        limiter.consume("")

    with pytest.raises(ValueError):
        limiter.consume("k", cost=0)


def test_cleanup_task_lifecycle() -> None:
    limiter = FixedWindowRateLimiter(limit=1, window_seconds=60, cleanup_interval_seconds=3600)

    limiter.start_cleanup()
    assert limiter._cleanup_task.running is True

    limiter.stop_cleanup()
    assert limiter._cleanup_task.running is False
