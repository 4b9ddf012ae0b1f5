"""In-memory fixed-window rate limiter.

Each client's window opens at its first request (not on a wall-clock grid)
and lasts ``window_ms``. A request arriving exactly ``window_ms`` after the
window opened starts a new window.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from throttle.adapters.rate_limit.base import (
    AbstractRateLimiter,
    AbstractWindowStore,
    RateLimitConfig,
    RateLimitResult,
)
from throttle.adapters.rate_limit.clock import wall_clock_ms
from throttle.adapters.rate_limit.store import InMemoryWindowStore


@dataclass
class FixedWindowState:
    window_start_ms: float
    count: int
    last_seen_ms: float


class FixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter counting requests per key in a fixed window.

    Example:
        >>> limiter = FixedWindowRateLimiter(RateLimitConfig(limit=3, window_ms=1000))
        >>> limiter.check_and_record("203.0.113.7", now_ms=0).allowed
        True
    """

    def __init__(
        self,
        config: RateLimitConfig,
        store: AbstractWindowStore[FixedWindowState] | None = None,
        *,
        clock: Callable[[], float] = wall_clock_ms,
    ) -> None:
        super().__init__(config, store if store is not None else InMemoryWindowStore(), clock=clock)

    def _is_window_expired(self, state: FixedWindowState, now_ms: float) -> bool:
        return now_ms - state.window_start_ms >= self._config.window_ms

    def check_and_record(self, key: str, now_ms: float | None = None) -> RateLimitResult:
        self._validate_key(key)
        now = self._now(now_ms)
        limit = self._config.limit

        with self._store.lock(key):
            state = self._store.get(key)

            if state is None or self._is_window_expired(state, now):
                state = FixedWindowState(window_start_ms=now, count=1, last_seen_ms=now)
                self._store.set(key, state)
            elif state.count < limit:
                state.count += 1
                state.last_seen_ms = now
            else:
                return self._build_result(
                    allowed=False,
                    now_ms=now,
                    remaining=0,
                    reset_at_ms=state.window_start_ms + self._config.window_ms,
                )

            return self._build_result(
                allowed=True,
                now_ms=now,
                remaining=limit - state.count,
                reset_at_ms=state.window_start_ms + self._config.window_ms,
            )

    def peek(self, key: str, now_ms: float | None = None) -> RateLimitResult:
        self._validate_key(key)
        now = self._now(now_ms)

        with self._store.lock(key):
            state = self._store.get(key)
            if state is None or self._is_window_expired(state, now):
                return self._build_result(
                    allowed=True,
                    now_ms=now,
                    remaining=self._config.limit,
                    reset_at_ms=now + self._config.window_ms,
                )
            remaining = self._config.limit - state.count
            return self._build_result(
                allowed=remaining > 0,
                now_ms=now,
                remaining=remaining,
                reset_at_ms=state.window_start_ms + self._config.window_ms,
            )

    def sweep_expired(self, now_ms: float | None = None) -> int:
        now = self._now(now_ms)
        window = self._config.window_ms
        return self._store.sweep(lambda state: now - state.last_seen_ms >= window)
