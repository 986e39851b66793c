from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class CacheInvalidateRequest(BaseModel):
    pattern: str = Field(
        ...,
        min_length=1,
        description="Key pattern where '*' matches any run of characters, e.g. 'item:*'",
        examples=["item:*"],
    )


class CacheInvalidateResponse(BaseModel):
    pattern: str
    removed: int = Field(..., ge=0, description="Number of keys deleted")


class EntityInvalidateRequest(BaseModel):
    entities: list[Literal["item", "family", "establishment", "health"]] = Field(
        ...,
        min_length=1,
        description="Entities whose cached query results are dropped",
        examples=[["item", "family"]],
    )


class EntityInvalidateResponse(BaseModel):
    entities: list[str]
    removed: int = Field(..., ge=0)


class CacheFlushResponse(BaseModel):
    flushed: bool


class WindowUsageModel(BaseModel):
    current: int
    limit: int
    remaining: int
    reset_at: datetime


class UserRateLimitStatsResponse(BaseModel):
    user_id: str
    tier: str
    usage: dict[str, WindowUsageModel]


class AggregatedRateLimitStatsResponse(BaseModel):
    total_users: int
    by_tier: dict[str, int]


class UserResetResponse(BaseModel):
    user_id: str
    reset: bool = Field(..., description="Whether the user had tracked usage")


class CacheHealth(BaseModel):
    enabled: bool
    strategy: str
    ready: bool


class HealthResponse(BaseModel):
    status: str = "ok"
    cache: CacheHealth
