"""Pydantic schemas for rate limit introspection responses."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class RateLimitProfileResponse(BaseModel):
    """Configuration of one named limiter profile."""

    name: str = Field(..., description="Profile name used by route dependencies.")
    points: int = Field(..., description="Requests allowed per window.")
    duration: int = Field(..., description="Window length in seconds.")
    block_duration: int = Field(
        ..., description="Cooldown in seconds applied once the window quota is spent."
    )
    key_prefix: str = Field(..., description="Namespace for identifiers in the quota store.")


class RateLimitProfilesResponse(BaseModel):
    """All configured profiles and the active store backend."""

    backend: str = Field(..., description="Quota store backend: 'memory' or 'database'.")
    profiles: List[RateLimitProfileResponse] = Field(default_factory=list)


class QuotaStateResponse(BaseModel):
    """Caller's current quota for a profile (read-only, nothing consumed)."""

    profile: str
    allowed: bool = Field(..., description="Whether the next request would be admitted.")
    limit: int = Field(..., description="Requests allowed per window.")
    remaining: int = Field(..., description="Requests left in the current window.")
    reset: int = Field(
        ..., description="Seconds until the window resets or the block lifts."
    )
