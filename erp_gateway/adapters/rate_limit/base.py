"""Rate limiter interfaces.

The API should depend on this abstraction (not the concrete implementation)
so the storage backend can be swapped later with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Mapping, TypedDict


class UserTier(str, Enum):
    """Subscription class that determines a user's request budget."""

    FREE = "free"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"
    ADMIN = "admin"


class Window(str, Enum):
    """Fixed counting windows, in evaluation order."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"

    @property
    def seconds(self) -> int:
        return _WINDOW_SECONDS[self]


_WINDOW_SECONDS = {
    Window.MINUTE: 60,
    Window.HOUR: 60 * 60,
    Window.DAY: 24 * 60 * 60,
}


@dataclass(frozen=True)
class TierLimits:
    """Requests allowed per window for one tier."""

    per_minute: int
    per_hour: int
    per_day: int

    def __post_init__(self) -> None:
        if min(self.per_minute, self.per_hour, self.per_day) < 1:
            raise ValueError("tier limits must be >= 1")

    def for_window(self, window: Window) -> int:
        if window is Window.MINUTE:
            return self.per_minute
        if window is Window.HOUR:
            return self.per_hour
        return self.per_day


TierTable = Mapping[UserTier, TierLimits]


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests in the reported window.
        remaining: Requests left in the reported window (0 when blocked).
        reset_at: UNIX epoch seconds when the reported window resets.
        retry_after_seconds: Suggested wait in whole seconds when blocked.
        window: Which per-user window this result describes; None for the
            single-window limiter applied to anonymous callers.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after_seconds: int | None
    window: Window | None = None


class WindowUsage(TypedDict):
    current: int
    limit: int
    remaining: int
    reset_at: datetime


class UserRateLimitStats(TypedDict):
    user_id: str
    tier: str
    usage: dict[str, WindowUsage]


class AggregatedRateLimitStats(TypedDict):
    total_users: int
    by_tier: dict[str, int]


class AbstractUserRateLimiter(ABC):
    """Interface for per-user rate limiters."""

    @abstractmethod
    def check(self, user_id: str, tier: UserTier | str) -> RateLimitResult:
        """Admit or reject one request from ``user_id``.

        Args:
            user_id: Stable user identity.
            tier: Subscription tier whose limits apply.

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    def reset_user(self, user_id: str) -> bool:
        """Forget a user's counters; returns whether a record existed."""
        raise NotImplementedError

    @abstractmethod
    def get_stats(
        self, user_id: str | None = None
    ) -> UserRateLimitStats | AggregatedRateLimitStats | None:
        """Per-user usage, or aggregate tracked-user counts when ``user_id`` is None."""
        raise NotImplementedError


class AbstractRateLimiter(ABC):
    """Interface for single-window limiters keyed by an opaque string."""

    @abstractmethod
    def consume(self, key: str, *, cost: int = 1) -> RateLimitResult:
        """Consume rate limit budget for ``key``.

        Args:
            key: Unique identifier for rate limiting (e.g., client address).
            cost: Units to consume.

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError
