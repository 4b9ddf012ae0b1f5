"""Rate limiter interfaces.

The API should depend on these abstractions (not the concrete
implementations) so the counting policy and the storage backend can be
swapped independently.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, TypeVar

from throttle.core.errors import ConfigurationAppError

SUPPORTED_STRATEGIES = ("fixed", "sliding")

RecordT = TypeVar("RecordT")


@dataclass(frozen=True)
class RateLimitConfig:
    """Validated limiter configuration, built once at startup.

    Attributes:
        limit: Maximum admitted requests per client within one window.
        window_ms: Window length in milliseconds.
        strategy: Counting policy, "fixed" or "sliding".

    Raises:
        ConfigurationAppError: If any value is out of range.
    """

    limit: int
    window_ms: int
    strategy: str = "fixed"

    def __post_init__(self) -> None:
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 1:
            raise ConfigurationAppError(
                code="invalid_rate_limit",
                message="limit must be a positive integer",
                details={"actual_value": self.limit, "min_value": 1},
            )
        if (
            isinstance(self.window_ms, bool)
            or not isinstance(self.window_ms, int)
            or self.window_ms < 1
        ):
            raise ConfigurationAppError(
                code="invalid_rate_limit_window",
                message="window_ms must be a positive integer",
                details={"actual_value": self.window_ms, "min_value": 1},
            )
        if self.strategy not in SUPPORTED_STRATEGIES:
            raise ConfigurationAppError(
                code="unknown_rate_limit_strategy",
                message=(
                    f"Unknown rate limit strategy: '{self.strategy}'. "
                    f"Supported strategies: {', '.join(SUPPORTED_STRATEGIES)}"
                ),
            )


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check/record operation.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at: UNIX epoch seconds when budget frees up again.
        retry_after_seconds: Suggested wait time in seconds when blocked.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_seconds: int | None


class AbstractWindowStore(ABC, Generic[RecordT]):
    """Owner of all per-client window records.

    Callers must hold ``lock(key)`` around any get/set/delete sequence for
    that key. ``sweep`` takes the locks itself.
    """

    @abstractmethod
    def lock(self, key: str) -> AbstractContextManager:
        """Return the lock guarding ``key``'s record."""
        raise NotImplementedError

    @abstractmethod
    def get(self, key: str) -> RecordT | None:
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, record: RecordT) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove one record.

        The in-process limiters only remove records through ``sweep``; shared
        backends use this for per-key expiry or administrative resets.
        """
        raise NotImplementedError

    @abstractmethod
    def sweep(self, is_expired: Callable[[RecordT], bool]) -> int:
        """Delete every record for which ``is_expired`` returns True.

        Returns:
            Number of records removed.
        """
        raise NotImplementedError

    @abstractmethod
    def keys(self) -> Iterable[str]:
        raise NotImplementedError

    @abstractmethod
    def __len__(self) -> int:
        raise NotImplementedError


class AbstractRateLimiter(ABC):
    """Interface for rate limiters.

    Timestamps are milliseconds. When ``now_ms`` is omitted the limiter reads
    its own clock.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        store: AbstractWindowStore,
        *,
        clock: Callable[[], float],
    ) -> None:
        self._config = config
        self._store = store
        self._clock = clock

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    @property
    def store(self) -> AbstractWindowStore:
        return self._store

    @abstractmethod
    def check_and_record(self, key: str, now_ms: float | None = None) -> RateLimitResult:
        """Decide whether a request from ``key`` is admitted.

        Admitted requests consume one unit of budget; rejected ones do not.

        Args:
            key: Unique client identifier (e.g., IP address).
            now_ms: Current time in milliseconds; defaults to the clock.

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    def peek(self, key: str, now_ms: float | None = None) -> RateLimitResult:
        """Report the budget available to ``key`` without consuming it."""
        raise NotImplementedError

    @abstractmethod
    def sweep_expired(self, now_ms: float | None = None) -> int:
        """Drop records with no activity within the window.

        Returns:
            Number of records removed.
        """
        raise NotImplementedError

    def tracked_clients(self) -> int:
        return len(self._store)

    def _now(self, now_ms: float | None) -> float:
        return self._clock() if now_ms is None else now_ms

    @staticmethod
    def _validate_key(key: str) -> None:
        if not key:
            raise ValueError("key must be a non-empty string")

    def _build_result(
        self, *, allowed: bool, now_ms: float, remaining: int, reset_at_ms: float
    ) -> RateLimitResult:
        """Build a RateLimitResult, converting times to epoch seconds."""
        retry_after = None
        if not allowed:
            retry_after = max(0, int(math.ceil((reset_at_ms - now_ms) / 1000)))
        return RateLimitResult(
            allowed=allowed,
            limit=self._config.limit,
            remaining=max(0, remaining),
            reset_at=int(math.ceil(reset_at_ms / 1000)),
            retry_after_seconds=retry_after,
        )
