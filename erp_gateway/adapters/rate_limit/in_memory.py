"""In-memory rate limiters.

- ``UserRateLimiter``: per-user minute, hour and day windows by tier.
- ``FixedWindowRateLimiter``: one aligned window per opaque key, used for
  callers without an identity (keyed by client address).

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: the whole read-check-increment sequence runs under one lock,
  so concurrent requests from a threadpool can never admit more than
  ``limit`` requests in any window.
- Per-user windows are fixed but not calendar-aligned: each one starts at
  the first request seen after its previous deadline and lasts exactly its
  duration.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from erp_gateway.adapters.rate_limit.base import (
    AbstractRateLimiter,
    AbstractUserRateLimiter,
    AggregatedRateLimitStats,
    RateLimitResult,
    TierTable,
    UserRateLimitStats,
    UserTier,
    Window,
)
from erp_gateway.core.errors import RateLimitInvariantError
from erp_gateway.utils.periodic import PeriodicTask

logger = logging.getLogger(__name__)

# Records stay this long past their day-window deadline before cleanup drops them
CLEANUP_GRACE_SECONDS = 24 * 60 * 60


@dataclass
class _WindowState:
    count: int
    reset_at: float


@dataclass
class _UserRecord:
    user_id: str
    tier: UserTier
    windows: dict[Window, _WindowState] = field(default_factory=dict)


class UserRateLimiter(AbstractUserRateLimiter):
    """Rate limiter tracking three fixed windows per user.

    A request is admitted only if every window has headroom; then all three
    counters advance together. A denial reports the blocking window that
    frees up first; an admission reports the window closest to exhaustion.
    """

    def __init__(
        self,
        tier_limits: TierTable,
        *,
        clock: Callable[[], float] = time.time,
        cleanup_interval_seconds: float = 3600.0,
    ) -> None:
        """Initialize the limiter.

        Args:
            tier_limits: Limits for each subscription tier.
            clock: Time source function returning UNIX time in seconds.
            cleanup_interval_seconds: Period of the background sweep started
                by ``start_cleanup``.

        Raises:
            ValueError: If no tiers are configured.
        """
        if not tier_limits:
            raise ValueError("tier_limits must define at least one tier")

        self._tier_limits = dict(tier_limits)
        self._clock = clock
        self._lock = threading.RLock()
        self._records: dict[str, _UserRecord] = {}
        self._cleanup_task = PeriodicTask(
            "rate-limit-cleanup", cleanup_interval_seconds, self.cleanup
        )

    def check(self, user_id: str, tier: UserTier | str) -> RateLimitResult:
        """Admit or reject one request and update counters.

        Raises:
            ValueError: If user_id is empty or tier is unknown.
            RateLimitInvariantError: If no window could be selected (a defect).
        """
        if not user_id:
            raise ValueError("user_id must be a non-empty string")
        resolved_tier = self._resolve_tier(tier)
        limits = self._tier_limits[resolved_tier]

        with self._lock:
            now = self._clock()
            record = self._records.get(user_id)
            if record is None:
                record = self._create_record(user_id, resolved_tier, now)
                self._records[user_id] = record
            record.tier = resolved_tier

            self._reset_expired(record, now)

            results = [
                self._evaluate(window, record.windows[window], limits.for_window(window), now)
                for window in Window
            ]

            denied = [r for r in results if not r.allowed]
            if denied:
                blocking = _first_min(denied, key=lambda r: r.reset_at)
                logger.warning(
                    "rate_limit.exceeded",
                    extra={
                        "user_id": user_id,
                        "tier": resolved_tier.value,
                        "window": blocking.window.value,
                        "limit": blocking.limit,
                        "retry_after_s": blocking.retry_after_seconds,
                    },
                )
                return blocking

            for state in record.windows.values():
                state.count += 1

            admitted = [
                self._evaluate(window, record.windows[window], limits.for_window(window), now, admitted=True)
                for window in Window
            ]
            return _first_min(admitted, key=lambda r: r.remaining)

    def cleanup(self) -> int:
        """Drop records whose day window ended more than the grace period ago.

        Returns:
            Number of records removed.
        """
        with self._lock:
            now = self._clock()
            stale = [
                user_id
                for user_id, record in self._records.items()
                if now > record.windows[Window.DAY].reset_at + CLEANUP_GRACE_SECONDS
            ]
            for user_id in stale:
                del self._records[user_id]
            remaining = len(self._records)

        logger.debug(
            "rate_limit.cleanup",
            extra={"removed": len(stale), "records_remaining": remaining},
        )
        return len(stale)

    def reset_user(self, user_id: str) -> bool:
        with self._lock:
            existed = self._records.pop(user_id, None) is not None
        logger.info("rate_limit.user_reset", extra={"user_id": user_id, "existed": existed})
        return existed

    def get_stats(
        self, user_id: str | None = None
    ) -> UserRateLimitStats | AggregatedRateLimitStats | None:
        with self._lock:
            if user_id is not None:
                record = self._records.get(user_id)
                if record is None:
                    return None
                return self._user_stats(record)

            by_tier = Counter(record.tier for record in self._records.values())
            return {
                "total_users": len(self._records),
                "by_tier": {tier.value: by_tier.get(tier, 0) for tier in UserTier},
            }

    def start_cleanup(self) -> None:
        """Start the recurring background cleanup."""
        self._cleanup_task.start()

    def stop_cleanup(self) -> None:
        self._cleanup_task.stop()

    def _resolve_tier(self, tier: UserTier | str) -> UserTier:
        try:
            resolved = tier if isinstance(tier, UserTier) else UserTier(str(tier).lower())
        except ValueError as exc:
            raise ValueError(f"unknown tier: {tier!r}") from exc
        if resolved not in self._tier_limits:
            raise ValueError(f"no limits configured for tier: {resolved.value!r}")
        return resolved

    @staticmethod
    def _create_record(user_id: str, tier: UserTier, now: float) -> _UserRecord:
        return _UserRecord(
            user_id=user_id,
            tier=tier,
            windows={window: _WindowState(count=0, reset_at=now + window.seconds) for window in Window},
        )

    @staticmethod
    def _reset_expired(record: _UserRecord, now: float) -> None:
        for window, state in record.windows.items():
            if now >= state.reset_at:
                state.count = 0
                state.reset_at = now + window.seconds

    @staticmethod
    def _evaluate(
        window: Window,
        state: _WindowState,
        limit: int,
        now: float,
        *,
        admitted: bool = False,
    ) -> RateLimitResult:
        allowed = admitted or state.count < limit
        retry_after = None if allowed else max(0, int(math.ceil(state.reset_at - now)))
        return RateLimitResult(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - state.count),
            reset_at=state.reset_at,
            retry_after_seconds=retry_after,
            window=window,
        )

    def _user_stats(self, record: _UserRecord) -> UserRateLimitStats:
        limits = self._tier_limits[record.tier]
        usage = {}
        for window, state in record.windows.items():
            limit = limits.for_window(window)
            usage[window.value] = {
                "current": state.count,
                "limit": limit,
                "remaining": max(0, limit - state.count),
                "reset_at": datetime.fromtimestamp(state.reset_at, tz=timezone.utc),
            }
        return {"user_id": record.user_id, "tier": record.tier.value, "usage": usage}


def _first_min(results: Iterable[RateLimitResult], *, key: Callable[[RateLimitResult], float]) -> RateLimitResult:
    """Smallest result by ``key``; ties keep minute -> hour -> day order."""

    best: RateLimitResult | None = None
    for result in results:
        if best is None or key(result) < key(best):
            best = result
    if best is None:
        raise RateLimitInvariantError(
            code="rate_limit_no_window",
            message="No rate limit window could be classified",
        )
    return best


@dataclass
class _KeyWindow:
    window_start: int
    count: int


class FixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter using one fixed time window per key.

    Windows are aligned to multiples of ``window_seconds`` since the epoch,
    so every key shares the same boundaries (e.g. 100 requests per 15
    minutes starting at :00, :15, :30 and :45).
    """

    def __init__(
        self,
        *,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
        cleanup_interval_seconds: float = 3600.0,
    ) -> None:
        """Initialize the limiter.

        Args:
            limit: Maximum number of allowed units per window.
            window_seconds: Size of the fixed window in seconds.
            clock: Time source function returning UNIX time in seconds.
            cleanup_interval_seconds: Period of the background sweep started
                by ``start_cleanup``.

        Raises:
            ValueError: If limit or window_seconds are invalid.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")

        self._limit = limit
        self._window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._state_by_key: dict[str, _KeyWindow] = {}
        self._cleanup_task = PeriodicTask(
            "fixed-window-cleanup", cleanup_interval_seconds, self.cleanup
        )

    def _window_start(self, now: float) -> int:
        return int(now // self._window_seconds) * self._window_seconds

    def consume(self, key: str, *, cost: int = 1) -> RateLimitResult:
        if cost < 1:
            raise ValueError("cost must be >= 1")
        if not key:
            raise ValueError("key must be a non-empty string")

        with self._lock:
            now = self._clock()
            window_start = self._window_start(now)
            reset_at = window_start + self._window_seconds

            state = self._state_by_key.get(key)
            if state is None or state.window_start != window_start:
                state = _KeyWindow(window_start=window_start, count=0)
                self._state_by_key[key] = state

            allowed = state.count + cost <= self._limit
            if allowed:
                state.count += cost

            return RateLimitResult(
                allowed=allowed,
                limit=self._limit,
                remaining=max(0, self._limit - state.count),
                reset_at=reset_at,
                retry_after_seconds=None if allowed else max(0, int(math.ceil(reset_at - now))),
            )

    def cleanup(self) -> int:
        """Drop keys whose window has ended; returns how many were removed."""
        with self._lock:
            current = self._window_start(self._clock())
            stale = [key for key, state in self._state_by_key.items() if state.window_start != current]
            for key in stale:
                del self._state_by_key[key]

        logger.debug("rate_limit.fixed_window_cleanup", extra={"removed": len(stale)})
        return len(stale)

    def start_cleanup(self) -> None:
        self._cleanup_task.start()

    def stop_cleanup(self) -> None:
        self._cleanup_task.stop()
