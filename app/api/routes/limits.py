from fastapi import APIRouter, Depends, Request

from app.core.rate_limit import (
    RATE_LIMIT_PROFILES,
    get_quota_store,
    get_rate_limiter,
    rate_limit,
    resolve_client_identifier,
)
from app.schemas.rate_limit import (
    QuotaStateResponse,
    RateLimitProfileResponse,
    RateLimitProfilesResponse,
)

router = APIRouter(tags=["Rate Limits"])


@router.get(
    "/limits",
    response_model=RateLimitProfilesResponse,
    dependencies=[Depends(rate_limit("public"))],
)
async def list_limits() -> RateLimitProfilesResponse:
    """List the configured limiter profiles.

    Returns:
        RateLimitProfilesResponse: Profiles and the active store backend.
    """
    return RateLimitProfilesResponse(
        backend=get_quota_store().name,
        profiles=[
            RateLimitProfileResponse(
                name=name,
                points=options.points,
                duration=options.duration,
                block_duration=options.block_duration,
                key_prefix=options.key_prefix,
            )
            for name, options in RATE_LIMIT_PROFILES.items()
        ],
    )


@router.get(
    "/limits/{profile}/state",
    response_model=QuotaStateResponse,
    dependencies=[Depends(rate_limit("protected"))],
)
async def get_limit_state(profile: str, request: Request) -> QuotaStateResponse:
    """Report the caller's quota for ``profile`` without consuming it.

    Raises:
        NotFoundAppError: 404 when the profile is not configured.
        StoreError: 503 when the quota store is unavailable.
    """
    limiter = get_rate_limiter(profile)
    state = await limiter.get_state(resolve_client_identifier(request))
    return QuotaStateResponse(
        profile=profile,
        allowed=state.allowed,
        limit=state.limit,
        remaining=state.remaining,
        reset=state.reset,
    )
