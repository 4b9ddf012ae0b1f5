"""In-memory sliding-window (timestamp log) rate limiter.

Trade-offs:
- Keeps one timestamp per admitted request, so memory per client is bounded
  by ``limit``.
- Expired timestamps are pruned before every decision, which is O(k) in the
  number of entries that left the window.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
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
class SlidingWindowState:
    timestamps: deque = field(default_factory=deque)

    @property
    def last_seen_ms(self) -> float | None:
        return self.timestamps[-1] if self.timestamps else None


class SlidingWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter counting admitted requests in the trailing window."""

    def __init__(
        self,
        config: RateLimitConfig,
        store: AbstractWindowStore[SlidingWindowState] | None = None,
        *,
        clock: Callable[[], float] = wall_clock_ms,
    ) -> None:
        super().__init__(config, store if store is not None else InMemoryWindowStore(), clock=clock)

    def _prune(self, state: SlidingWindowState, now_ms: float) -> None:
        cutoff = now_ms - self._config.window_ms
        timestamps = state.timestamps
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()

    def _reset_at(self, state: SlidingWindowState, now_ms: float) -> float:
        if not state.timestamps:
            return now_ms + self._config.window_ms
        return state.timestamps[0] + self._config.window_ms

    def check_and_record(self, key: str, now_ms: float | None = None) -> RateLimitResult:
        self._validate_key(key)
        now = self._now(now_ms)
        limit = self._config.limit

        with self._store.lock(key):
            state = self._store.get(key)
            if state is None:
                state = SlidingWindowState()
            else:
                self._prune(state, now)

            if len(state.timestamps) >= limit:
                return self._build_result(
                    allowed=False,
                    now_ms=now,
                    remaining=0,
                    reset_at_ms=self._reset_at(state, now),
                )

            state.timestamps.append(now)
            self._store.set(key, state)
            return self._build_result(
                allowed=True,
                now_ms=now,
                remaining=limit - len(state.timestamps),
                reset_at_ms=self._reset_at(state, now),
            )

    def peek(self, key: str, now_ms: float | None = None) -> RateLimitResult:
        self._validate_key(key)
        now = self._now(now_ms)
        cutoff = now - self._config.window_ms

        with self._store.lock(key):
            state = self._store.get(key)
            live = [t for t in state.timestamps if t > cutoff] if state else []

        remaining = self._config.limit - len(live)
        reset_at_ms = live[0] + self._config.window_ms if live else now + self._config.window_ms
        return self._build_result(
            allowed=remaining > 0,
            now_ms=now,
            remaining=remaining,
            reset_at_ms=reset_at_ms,
        )

    def sweep_expired(self, now_ms: float | None = None) -> int:
        now = self._now(now_ms)
        window = self._config.window_ms

        def is_expired(state: SlidingWindowState) -> bool:
            last_seen = state.last_seen_ms
            return last_seen is None or now - last_seen >= window

        return self._store.sweep(is_expired)
