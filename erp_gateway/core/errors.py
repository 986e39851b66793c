"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

The cache layer never raises these: adapter failures are converted into
neutral results at the adapter boundary. Rate limiting raises
``RateLimitExceededError`` from the HTTP dependency only, after the limiter
itself has returned a denial.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from erp_gateway.adapters.rate_limit.base import RateLimitResult


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    http_status: int
    retry_after: float
    limit: int
    remaining: int
    reset_at: float
    tier: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class RateLimitInvariantError(AppError):
    """Raised when no rate-limit window could be classified.

    Unreachable under correct operation; signals a logic defect in the
    limiter rather than an operational failure.
    """


@dataclass
class RateLimitExceededError(AppError):
    """Raised by the HTTP layer when a rate limiter denies a request.

    Attributes:
        result: The denying window's result (limit, reset time, retry hint).
    """

    result: "RateLimitResult | None" = None
