"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before any import of throttle.core.config so
the global settings object is built from them.
"""

import os

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("RATE_LIMIT_LIMIT", "5")
os.environ.setdefault("RATE_LIMIT_WINDOW_MS", "60000")
os.environ.setdefault("RATE_LIMIT_SWEEP_INTERVAL_MS", "0")
os.environ.setdefault("LOG_LEVEL", "WARNING")
