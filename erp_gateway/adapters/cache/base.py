"""Cache adapter interface.

The facade depends on this abstraction (not the concrete tiers), so the
storage strategy can change through configuration alone.

Contract: every operation is async and never raises to the caller.
Failures are logged and converted into the operation's neutral result
(``None``, ``False``, ``0`` or ``[]``).
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any, TypedDict


class CacheStats(TypedDict):
    """Native hit/miss counters of a single tier."""

    hits: int
    misses: int
    keys: int
    hit_rate: float


def compute_hit_rate(hits: int, misses: int) -> float:
    """Hit percentage rounded to 2 decimals; 0 when there are no hits."""

    if hits <= 0:
        return 0.0
    return round(hits / (hits + misses) * 100, 2)


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a key pattern into an anchored regex.

    ``*`` matches any run of characters; every other character is literal.

    Examples:
        >>> bool(glob_to_regex("item:*").match("item:123"))
        True
        >>> bool(glob_to_regex("item:*").match("items:123"))
        False
    """

    body = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.compile(f"^{body}$", re.DOTALL)


class CacheAdapter(ABC):
    """Interface for cache tiers."""

    name: str

    async def connect(self) -> None:
        """Perform the tier's connection handshake, if it has one.

        Called once by the facade after construction. Must not raise; a tier
        that cannot connect reports ``is_ready() is False`` instead.
        """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None on miss, expiry or error."""
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Store ``value``; the tier's default TTL applies when ``ttl`` is None.

        Returns:
            True on success, False on any failure.
        """
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> int:
        """Remove ``key``; returns 1 when it existed, otherwise 0."""
        raise NotImplementedError

    @abstractmethod
    async def flush(self) -> None:
        """Clear the whole tier."""
        raise NotImplementedError

    @abstractmethod
    async def keys(self, pattern: str | None = None) -> list[str]:
        """List live keys, optionally filtered by a ``*`` wildcard pattern."""
        raise NotImplementedError

    @abstractmethod
    async def is_ready(self) -> bool:
        """Whether the tier can currently serve operations."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """Release timers and network handles. Idempotent."""
        raise NotImplementedError
