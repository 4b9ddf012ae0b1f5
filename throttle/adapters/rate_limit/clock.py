from __future__ import annotations

import time


def wall_clock_ms() -> float:
    """Current UNIX time in milliseconds."""
    return time.time() * 1000
