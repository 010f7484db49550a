"""Rate limiting dependencies for FastAPI routes.

This module wires the quota limiter into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency function only.
- Swap-friendly: the quota store is chosen by configuration behind an
  abstract interface and shared by every named profile.
- Explicit failure policy: a store outage fails open (logged) unless
  RATE_LIMIT_FAIL_OPEN=false, in which case the request gets a 503.

Identifier strategy:
- First hop of X-Forwarded-For when trusted, else the socket peer address.
- Requests that cannot be identified ("unknown") are not limited.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Awaitable, Callable

from fastapi import Request, Response

from app.adapters.rate_limit.base import AbstractQuotaStore, RateLimitResult
from app.adapters.rate_limit.factory import create_quota_store
from app.core.config import settings
from app.core.errors import NotFoundAppError, RateLimitAppError, StoreError
from app.services.rate_limiter import RateLimiter, RateLimiterOptions

logger = logging.getLogger(__name__)

UNKNOWN_IDENTIFIER = "unknown"

# Named profiles used by portal routes.
RATE_LIMIT_PROFILES: dict[str, RateLimiterOptions] = {
    "auth": RateLimiterOptions(points=5, duration=15 * 60, block_duration=30 * 60, key_prefix="auth"),
    "public": RateLimiterOptions(points=120, duration=60, block_duration=60, key_prefix="api:public"),
    "protected": RateLimiterOptions(points=60, duration=60, block_duration=60, key_prefix="api:protected"),
    "admin": RateLimiterOptions(points=30, duration=60, block_duration=60, key_prefix="api:admin"),
    "time-off": RateLimiterOptions(points=100, duration=60, block_duration=5 * 60, key_prefix="time-off"),
}

_store: AbstractQuotaStore | None = None
_limiters: dict[str, RateLimiter] = {}


def get_quota_store() -> AbstractQuotaStore:
    """Return the process-wide quota store, creating it on first use."""

    global _store

    if _store is None:
        _store = create_quota_store(settings.rate_limit)
    return _store


def get_rate_limiter(profile: str) -> RateLimiter:
    """Return the limiter for a named profile.

    Limiters are cached in-module so quota state persists across requests.

    Raises:
        NotFoundAppError: If the profile is not configured.
    """

    limiter = _limiters.get(profile)
    if limiter is not None:
        return limiter

    options = RATE_LIMIT_PROFILES.get(profile)
    if options is None:
        raise NotFoundAppError(
            code="rate_limit_profile_not_found",
            message=f"Unknown rate limit profile: '{profile}'",
            details={"profile": profile},
        )

    limiter = RateLimiter(options, get_quota_store())
    _limiters[profile] = limiter
    return limiter


def set_quota_store(store: AbstractQuotaStore | None) -> None:
    """Replace the shared store and drop cached limiters (used by tests and startup)."""

    global _store

    _store = store
    _limiters.clear()


def reset_rate_limiters() -> None:
    """Forget every limiter and the store so the next request starts clean."""

    set_quota_store(None)


def resolve_client_identifier(request: Request) -> str:
    """Resolve the identifier quotas are tracked against.

    Args:
        request: FastAPI request.

    Returns:
        str: Forwarded-for client, socket peer host, or "unknown".
    """

    if settings.rate_limit.trust_forwarded_for:
        forwarded_for = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    if request.client and request.client.host:
        return request.client.host

    return UNKNOWN_IDENTIFIER


def _hash_identifier(identifier: str) -> str:
    """Hash the identifier for logging without exposing client addresses."""
    return hashlib.sha256(identifier.encode()).hexdigest()[:16]


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Build X-RateLimit-* headers for a decision."""

    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset),
    }


def rate_limit(profile: str) -> Callable[[Request, Response], Awaitable[RateLimitResult | None]]:
    """Build a FastAPI dependency enforcing the named profile.

    Usage:
        @router.get("/things", dependencies=[Depends(rate_limit("public"))])

    Args:
        profile: Key into RATE_LIMIT_PROFILES.

    Returns:
        Async dependency returning the decision, or None when not enforced.
    """

    if profile not in RATE_LIMIT_PROFILES:
        raise ValueError(f"Unknown rate limit profile: {profile}")

    async def enforce_rate_limit(request: Request, response: Response) -> RateLimitResult | None:
        """Consume one unit for the caller or raise RateLimitAppError (429)."""

        if not settings.rate_limit.enabled:
            return None

        identifier = resolve_client_identifier(request)
        if not identifier or identifier == UNKNOWN_IDENTIFIER:
            logger.debug(
                "rate_limit.skipped",
                extra={"profile": profile, "reason": "unidentified_client"},
            )
            return None

        limiter = get_rate_limiter(profile)
        identifier_hash = _hash_identifier(identifier)

        try:
            result = await limiter.check(identifier)
        except StoreError as exc:
            logger.error(
                "rate_limit.store_error",
                extra={
                    "profile": profile,
                    "identifier_hash": identifier_hash,
                    "error_code": exc.code,
                    "fail_open": settings.rate_limit.fail_open,
                },
            )
            if settings.rate_limit.fail_open:
                return None
            raise

        if result.allowed:
            logger.info(
                "rate_limit.allowed",
                extra={
                    "profile": profile,
                    "identifier_hash": identifier_hash,
                    "limit": result.limit,
                    "remaining": result.remaining,
                    "reset_s": result.reset,
                },
            )
            if settings.rate_limit.include_headers:
                for name, value in rate_limit_headers(result).items():
                    response.headers[name] = value
            return result

        logger.warning(
            "rate_limit.exceeded",
            extra={
                "profile": profile,
                "identifier_hash": identifier_hash,
                "limit": result.limit,
                "remaining": result.remaining,
                "reset_s": result.reset,
            },
        )
        raise RateLimitAppError(
            code="RATE_LIMIT_EXCEEDED",
            message="Too many requests",
            details={
                "limit": result.limit,
                "remaining": result.remaining,
                "reset": result.reset,
                "profile": profile,
            },
        )

    return enforce_rate_limit


async def cleanup_rate_limits() -> int:
    """Purge stale records for every profile; returns the total removed."""

    removed = 0
    for profile in RATE_LIMIT_PROFILES:
        limiter = get_rate_limiter(profile)
        removed += await limiter.cleanup(settings.rate_limit.retention_seconds)

    logger.info(
        "rate_limit.cleanup",
        extra={
            "removed": removed,
            "retention_s": settings.rate_limit.retention_seconds,
            "backend": get_quota_store().name,
        },
    )
    return removed
