"""Rate-limited routes.

``/ping`` consumes budget through the ``enforce_rate_limit`` dependency.
``/rate-limit/status`` reports the caller's budget without consuming it.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from throttle.core.rate_limit import (
    enforce_rate_limit,
    extract_client_key,
    get_rate_limiter,
)

router = APIRouter(tags=["Rate limit"])


class RateLimitStatus(BaseModel):
    """Current budget for the calling client."""

    key_type: str = Field(..., description="How the client was identified (ip, api_key, ...)")
    strategy: str = Field(..., description="Counting policy in use")
    limit: int = Field(..., description="Admitted requests per window")
    window_ms: int = Field(..., description="Window length in milliseconds")
    remaining: int = Field(..., description="Requests left in the current window")
    reset_at: int = Field(..., description="UNIX time at which budget frees up")
    tracked_clients: int = Field(..., description="Clients currently tracked by the limiter")


@router.get("/ping", dependencies=[Depends(enforce_rate_limit)])
def ping() -> dict:
    return {"status": "ok"}


@router.get("/rate-limit/status", response_model=RateLimitStatus)
def rate_limit_status(request: Request) -> RateLimitStatus:
    limiter = get_rate_limiter(request)
    key_type, key = extract_client_key(request)
    result = limiter.peek(key)
    return RateLimitStatus(
        key_type=key_type,
        strategy=limiter.config.strategy,
        limit=result.limit,
        window_ms=limiter.config.window_ms,
        remaining=result.remaining,
        reset_at=result.reset_at,
        tracked_clients=limiter.tracked_clients(),
    )
