"""Factory for creating rate limiter instances."""

from __future__ import annotations

from throttle.adapters.rate_limit.base import AbstractRateLimiter, RateLimitConfig
from throttle.adapters.rate_limit.fixed_window import FixedWindowRateLimiter
from throttle.adapters.rate_limit.sliding_window import SlidingWindowRateLimiter
from throttle.adapters.rate_limit.store import InMemoryWindowStore
from throttle.core.config import RateLimitSettings, settings


def create_rate_limiter(rate_limit_settings: RateLimitSettings | None = None) -> AbstractRateLimiter:
    """Instantiate the limiter selected by configuration.

    Reads ``settings.rate_limit`` (Pydantic Settings) unless explicit
    settings are passed.

    Returns:
        AbstractRateLimiter: Limiter backed by a fresh in-memory store.

    Raises:
        ConfigurationAppError: If limit, window or strategy are invalid.
    """
    cfg = rate_limit_settings or settings.rate_limit
    config = RateLimitConfig(
        limit=cfg.limit,
        window_ms=cfg.window_ms,
        strategy=cfg.strategy.lower(),
    )
    store = InMemoryWindowStore(shards=cfg.shards)

    if config.strategy == "sliding":
        return SlidingWindowRateLimiter(config, store)
    return FixedWindowRateLimiter(config, store)
