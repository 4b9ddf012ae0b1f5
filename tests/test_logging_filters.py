"""Tests for sensitive data filtering and JSON log formatting."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from throttle.core.logging import (
    JsonFormatter,
    Redactor,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    set_request_id,
)


@pytest.fixture
def capture() -> tuple[logging.Logger, StringIO]:
    logger = logging.getLogger("test_redaction")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    return logger, stream


def test_redacts_client_identifiers(capture) -> None:
    logger, stream = capture

    logger.info(
        "rate_limit.exceeded",
        extra={
            "client_key": "ip:203.0.113.7",
            "x-forwarded-for": "203.0.113.7, 10.0.0.1",
            "key_hash": "abc123",
        },
    )

    output = stream.getvalue()
    assert "203.0.113.7" not in output
    assert "[REDACTED]" in output
    assert "abc123" in output


def test_redacts_api_keys_in_nested_dicts(capture) -> None:
    logger, stream = capture

    logger.info(
        "nested_event",
        extra={
            "headers": {"x-api-key": "secret-key", "user-agent": "pytest"},
            "api_key": "sk-secret-123",
        },
    )

    output = stream.getvalue()
    assert "secret-key" not in output
    assert "sk-secret-123" not in output
    assert "pytest" in output


def test_safe_fields_pass_through(capture) -> None:
    logger, stream = capture

    logger.info(
        "rate_limit.allowed",
        extra={"limit": 10, "remaining": 3, "window_ms": 60000, "key_type": "ip"},
    )

    record = json.loads(stream.getvalue())
    assert record["message"] == "rate_limit.allowed"
    assert record["level"] == "info"
    assert record["limit"] == 10
    assert record["remaining"] == 3
    assert record["key_type"] == "ip"
    assert "[REDACTED]" not in stream.getvalue()


def test_request_id_from_context(capture) -> None:
    logger, stream = capture

    set_request_id("req-123")
    try:
        logger.info("with_context")
    finally:
        clear_request_id()

    assert json.loads(stream.getvalue())["request_id"] == "req-123"


def test_custom_sensitive_keys_are_case_insensitive() -> None:
    redactor = Redactor(["X-Tenant"])

    assert redactor.redact({"x-tenant": "acme", "route": "/v1/ping"}) == {
        "x-tenant": "[REDACTED]",
        "route": "/v1/ping",
    }


def test_exception_is_rendered(capture) -> None:
    logger, stream = capture

    try:
        raise RuntimeError("sweep failed")
    except RuntimeError:
        logger.exception("rate_limit.sweep_failed")

    record = json.loads(stream.getvalue())
    assert "RuntimeError: sweep failed" in record["exc_info"]
