"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiting adapter into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on a dependency function only.
- Swap-friendly: the limiter lives on ``app.state`` behind an abstract
  interface, so tests and deployments can inject their own.
- Explicit failure policy: what happens when the limiter itself fails is
  chosen by RATE_LIMIT_FAILURE_MODE, never implied.

Headers follow the common X-RateLimit-* convention: limit, remaining budget
and the UNIX time at which budget frees up. Rejections add Retry-After.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Callable

from fastapi import HTTPException, Request, Response, status

from throttle.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from throttle.adapters.rate_limit.factory import create_rate_limiter
from throttle.core.config import settings
from throttle.core.errors import RateLimitBackendError

logger = logging.getLogger(__name__)

KeyExtractor = Callable[[Request], tuple[str, str]]


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def client_ip_key(request: Request) -> tuple[str, str]:
    """Key on the transport-level peer address."""
    return "ip", f"ip:{_client_host(request)}"


def forwarded_for_key(request: Request) -> tuple[str, str]:
    """Key on the first X-Forwarded-For hop, falling back to the peer address.

    Only safe behind a proxy that overwrites the header.
    """
    forwarded = request.headers.get("X-Forwarded-For", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return "forwarded_for", f"ip:{first_hop}"
    return client_ip_key(request)


def api_key_or_ip_key(request: Request) -> tuple[str, str]:
    """Key on X-API-Key when present, otherwise on the peer address."""
    api_key = request.headers.get("X-API-Key")
    if api_key:
        return "api_key", f"api_key:{api_key}"
    return client_ip_key(request)


KEY_EXTRACTORS: dict[str, KeyExtractor] = {
    "client_ip": client_ip_key,
    "forwarded_for": forwarded_for_key,
    "api_key_or_ip": api_key_or_ip_key,
}


def extract_client_key(request: Request) -> tuple[str, str]:
    """Return ``(key_type, client_key)`` using the configured key source."""
    return KEY_EXTRACTORS[settings.rate_limit.key_source](request)


def get_rate_limiter(request: Request) -> AbstractRateLimiter:
    """Return the limiter owned by the application.

    ``create_app`` installs one on ``app.state``; a bare FastAPI app gets one
    built from settings on first use.
    """

    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        limiter = create_rate_limiter()
        request.app.state.rate_limiter = limiter
    return limiter


def hash_client_key(key: str) -> str:
    """Hash the client key for logging without exposing addresses or secrets."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_at),
    }
    if not result.allowed:
        headers["Retry-After"] = str(result.retry_after_seconds or 0)
    return headers


def _check(limiter: AbstractRateLimiter, key: str, key_hash: str) -> RateLimitResult | None:
    """Run the limiter, applying the configured failure mode.

    Returns:
        The limiter's decision, or None when the limiter failed and the
        failure mode is "open".

    Raises:
        RateLimitBackendError: Limiter failed and failure mode is "closed".
    """

    failure_mode = settings.rate_limit.failure_mode
    try:
        return limiter.check_and_record(key)
    except Exception as exc:
        if failure_mode == "raise":
            raise
        logger.error(
            "rate_limit.backend_error",
            extra={
                "key_hash": key_hash,
                "failure_mode": failure_mode,
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
            },
        )
        if failure_mode == "open":
            return None
        raise RateLimitBackendError(
            code="rate_limiter_unavailable",
            message="Rate limiter unavailable. Try again later.",
        ) from exc


async def enforce_rate_limit(request: Request, response: Response) -> None:
    """FastAPI dependency enforcing per-client rate limits.

    When enabled, records one request against the caller's budget. Admitted
    requests get X-RateLimit-* headers on the response; rejected ones raise
    HTTP 429.

    Args:
        request: FastAPI request.
        response: Response the route will return; receives the headers.

    Raises:
        HTTPException: 429 Too Many Requests when the budget is exhausted.
    """

    cfg = settings.rate_limit
    if not cfg.enabled:
        return

    limiter = get_rate_limiter(request)
    key_type, key = extract_client_key(request)
    key_hash = hash_client_key(key)

    result = _check(limiter, key, key_hash)
    if result is None:
        return

    if result.allowed:
        logger.debug(
            "rate_limit.allowed",
            extra={
                "key_type": key_type,
                "key_hash": key_hash,
                "limit": result.limit,
                "remaining": result.remaining,
                "window_ms": limiter.config.window_ms,
            },
        )
        if cfg.include_headers:
            response.headers.update(rate_limit_headers(result))
        return

    logger.warning(
        "rate_limit.exceeded",
        extra={
            "key_type": key_type,
            "key_hash": key_hash,
            "limit": result.limit,
            "remaining": result.remaining,
            "window_ms": limiter.config.window_ms,
            "retry_after_s": result.retry_after_seconds,
        },
    )

    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Rate limit exceeded. Try again later.",
        headers=rate_limit_headers(result) if cfg.include_headers else None,
    )
