"""Tests for the rate limit dependency and the rate-limited routes.

Each test builds its own app with an injected limiter so budgets never leak
between tests.
"""

from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from throttle.adapters.rate_limit.base import RateLimitConfig
from throttle.adapters.rate_limit.fixed_window import FixedWindowRateLimiter
from throttle.adapters.rate_limit.sliding_window import SlidingWindowRateLimiter
from throttle.core.app_factory import create_app
from throttle.core.config import settings


def make_client(limiter=None, **client_kwargs) -> TestClient:
    limiter = limiter or FixedWindowRateLimiter(RateLimitConfig(limit=2, window_ms=60_000))
    return TestClient(create_app(limiter=limiter), **client_kwargs)


@pytest.fixture
def client() -> TestClient:
    return make_client()


class TestEnforceRateLimit:
    def test_admitted_requests_carry_headers(self, client: TestClient) -> None:
        first = client.get("/v1/ping")
        second = client.get("/v1/ping")

        assert first.status_code == 200
        assert first.json() == {"status": "ok"}
        assert first.headers["X-RateLimit-Limit"] == "2"
        assert first.headers["X-RateLimit-Remaining"] == "1"
        assert second.headers["X-RateLimit-Remaining"] == "0"
        assert int(first.headers["X-RateLimit-Reset"]) > 0
        assert "Retry-After" not in first.headers

    def test_exhausted_budget_returns_429(self, client: TestClient) -> None:
        client.get("/v1/ping")
        client.get("/v1/ping")

        resp = client.get("/v1/ping")

        assert resp.status_code == 429
        assert resp.json()["detail"] == "Rate limit exceeded. Try again later."
        assert resp.headers["X-RateLimit-Limit"] == "2"
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        assert 0 < int(resp.headers["Retry-After"]) <= 60
        assert resp.headers.get("X-Request-ID")

    def test_headers_can_be_disabled(self, client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "include_headers", False)

        ok = client.get("/v1/ping")
        client.get("/v1/ping")
        blocked = client.get("/v1/ping")

        assert "X-RateLimit-Limit" not in ok.headers
        assert blocked.status_code == 429
        assert "Retry-After" not in blocked.headers

    def test_disabled_limiter_admits_everything(self, client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "enabled", False)

        statuses = {client.get("/v1/ping").status_code for _ in range(10)}

        assert statuses == {200}

    def test_health_is_not_rate_limited(self, client: TestClient) -> None:
        statuses = {client.get("/health").status_code for _ in range(10)}

        assert statuses == {200}

    def test_sliding_window_limiter(self) -> None:
        limiter = SlidingWindowRateLimiter(RateLimitConfig(limit=1, window_ms=60_000, strategy="sliding"))
        client = make_client(limiter)

        assert client.get("/v1/ping").status_code == 200
        assert client.get("/v1/ping").status_code == 429


class TestKeySources:
    def test_forwarded_for_partitions_by_first_hop(self, client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "key_source", "forwarded_for")
        a = {"X-Forwarded-For": "198.51.100.1, 10.0.0.1"}
        b = {"X-Forwarded-For": "198.51.100.2"}

        assert client.get("/v1/ping", headers=a).status_code == 200
        assert client.get("/v1/ping", headers=a).status_code == 200
        assert client.get("/v1/ping", headers=a).status_code == 429

        assert client.get("/v1/ping", headers=b).status_code == 200

    def test_api_key_or_ip(self, client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "key_source", "api_key_or_ip")

        for _ in range(2):
            assert client.get("/v1/ping", headers={"X-API-Key": "k1"}).status_code == 200
        assert client.get("/v1/ping", headers={"X-API-Key": "k1"}).status_code == 429

        assert client.get("/v1/ping", headers={"X-API-Key": "k2"}).status_code == 200
        assert client.get("/v1/ping").status_code == 200

    def test_client_ip_ignores_forwarded_header(self, client: TestClient) -> None:
        client.get("/v1/ping", headers={"X-Forwarded-For": "198.51.100.1"})
        client.get("/v1/ping", headers={"X-Forwarded-For": "198.51.100.2"})

        assert client.get("/v1/ping", headers={"X-Forwarded-For": "198.51.100.3"}).status_code == 429


class TestFailureModes:
    @staticmethod
    def broken_limiter() -> Mock:
        limiter = Mock()
        limiter.check_and_record.side_effect = RuntimeError("store unavailable")
        limiter.config = RateLimitConfig(limit=2, window_ms=1000)
        return limiter

    def test_raise_mode_propagates_to_500(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "failure_mode", "raise")
        client = make_client(self.broken_limiter(), raise_server_exceptions=False)

        resp = client.get("/v1/ping")

        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "internal_server_error"

    def test_open_mode_admits(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "failure_mode", "open")
        client = make_client(self.broken_limiter())

        resp = client.get("/v1/ping")

        assert resp.status_code == 200
        assert "X-RateLimit-Limit" not in resp.headers

    def test_closed_mode_rejects_with_503(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "failure_mode", "closed")
        client = make_client(self.broken_limiter())

        resp = client.get("/v1/ping")

        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "rate_limiter_unavailable"


class TestStatusEndpoint:
    def test_reports_budget_without_consuming(self, client: TestClient) -> None:
        client.get("/v1/ping")

        first = client.get("/v1/rate-limit/status").json()
        second = client.get("/v1/rate-limit/status").json()

        assert first == second
        assert first["key_type"] == "ip"
        assert first["strategy"] == "fixed"
        assert first["limit"] == 2
        assert first["window_ms"] == 60_000
        assert first["remaining"] == 1
        assert first["tracked_clients"] == 1


class TestLifespan:
    def test_sweeper_runs_for_app_lifetime(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "sweep_interval_ms", 50)
        app = create_app(limiter=FixedWindowRateLimiter(RateLimitConfig(limit=2, window_ms=1000)))

        with TestClient(app) as client:
            assert client.get("/v1/ping").status_code == 200
            sweeper = app.state.sweeper
            assert sweeper is not None
            assert sweeper.running is True

        assert sweeper.running is False

    def test_sweeper_disabled_with_zero_interval(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "sweep_interval_ms", 0)
        app = create_app()

        with TestClient(app) as client:
            assert client.get("/health").status_code == 200
            assert app.state.sweeper is None

    def test_app_builds_limiter_from_settings(self) -> None:
        app = create_app()

        assert app.state.rate_limiter.config.limit == settings.rate_limit.limit
        assert app.state.rate_limiter.config.window_ms == settings.rate_limit.window_ms
