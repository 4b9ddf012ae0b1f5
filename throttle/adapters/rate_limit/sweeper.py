"""Background sweep of expired rate limit records.

The sweeper is an asyncio task owned by the application lifespan: started on
startup and cancelled on shutdown, so no timers outlive the app (or a test).
"""

from __future__ import annotations

import asyncio
import logging
import time

from throttle.adapters.rate_limit.base import AbstractRateLimiter

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Periodically calls ``sweep_expired`` on a limiter.

    Attributes:
        interval_seconds: Delay between sweeps.
    """

    def __init__(self, limiter: AbstractRateLimiter, *, interval_ms: int) -> None:
        if interval_ms < 1:
            raise ValueError("interval_ms must be >= 1")
        self._limiter = limiter
        self.interval_seconds = interval_ms / 1000
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the sweep loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="rate-limit-sweeper"
        )
        logger.info(
            "rate_limit.sweeper_started",
            extra={"interval_s": self.interval_seconds},
        )

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("rate_limit.sweeper_stopped")

    def sweep_once(self) -> int:
        """Run one pass synchronously; the background loop runs it in a worker thread."""
        start = time.perf_counter()
        removed = self._limiter.sweep_expired()
        logger.debug(
            "rate_limit.sweep",
            extra={
                "removed": removed,
                "tracked": self._limiter.tracked_clients(),
                "duration_ms": round((time.perf_counter() - start) * 1000, 3),
            },
        )
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await asyncio.to_thread(self.sweep_once)
            except Exception:
                # A failed pass leaves records in place; the next pass retries.
                logger.exception("rate_limit.sweep_failed")
