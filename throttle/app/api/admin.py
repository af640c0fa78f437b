"""Operator endpoints for inspecting and clearing rate limit buckets."""

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from throttle.app.exceptions import ConfigError
from throttle.app.middleware.auth import require_admin
from throttle.app.services.rate_limit import Decision, Profile, RateLimiter, get_rate_limiter

router = APIRouter(prefix="/admin/rate-limits", tags=["admin"], dependencies=[Depends(require_admin)])


class ResetRequest(BaseModel):
    client_key: str = Field(..., min_length=1, max_length=512, examples=["ip:203.0.113.5"])
    profile: str = Field(..., min_length=1)


class StatusResponse(BaseModel):
    client_key: str
    profile: str
    allowed: bool
    remaining: int
    limit: int
    reset_at: int

    @classmethod
    def from_decision(cls, client_key: str, profile: Profile, decision: Decision) -> "StatusResponse":
        return cls(
            client_key=client_key,
            profile=profile.name,
            allowed=decision.allowed,
            remaining=decision.remaining,
            limit=decision.limit,
            reset_at=decision.reset_at,
        )


class ProfileResponse(BaseModel):
    name: str
    max_requests: int
    window_seconds: int
    key_prefix: str
    identification: str


def _lookup(limiter: RateLimiter, name: str) -> Profile:
    try:
        return limiter.registry.lookup(name)
    except ConfigError as e:
        raise HTTPException(status_code=404, detail=e.message) from None


@router.get("/profiles")
async def list_profiles(limiter: RateLimiter = Depends(get_rate_limiter)) -> list[ProfileResponse]:
    """List the registered profiles."""
    return [
        ProfileResponse(
            name=p.name,
            max_requests=p.max_requests,
            window_seconds=p.window_seconds,
            key_prefix=p.key_prefix,
            identification=p.identification.value,
        )
        for p in limiter.registry.values()
    ]


@router.get("/status")
async def get_status(
    client_key: str = Query(..., min_length=1, max_length=512),
    profile: str = Query(...),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> StatusResponse:
    """Peek at a client's bucket without counting a request."""
    resolved = _lookup(limiter, profile)
    decision = await limiter.status(client_key, resolved)
    return StatusResponse.from_decision(client_key, resolved, decision)


@router.post("/reset")
async def reset(
    data: ResetRequest,
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> dict:
    """Clear a client's bucket, e.g. after a false positive."""
    resolved = _lookup(limiter, data.profile)
    await limiter.reset(data.client_key, resolved.key_prefix)
    return {"success": True, "client_key": data.client_key, "profile": resolved.name}
