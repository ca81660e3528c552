"""
Tests for the HTTP admission middleware.

Uses FastAPI TestClient with an in-memory store and a fake clock.
Covers: client address extraction, static bypass, 403 for blocked callers,
429 with rate headers, 503 under fail-closed outages, bot-traffic and
rapid-request reporting.
"""

from unittest.mock import MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from agentgate.admission import AdmissionController
from agentgate.api.middleware import AdmissionMiddleware, get_client_ip, rate_limit_headers
from agentgate.core.config import parse_security_config
from agentgate.core.errors import StoreUnavailable
from agentgate.limits.sliding_window import RateLimitDecision
from agentgate.store import InMemoryStore, paths

from conftest import FakeClock, T0

CLIENT = "203.0.113.9"


def _make_app(controller: AdmissionController) -> FastAPI:
    app = FastAPI()
    app.add_middleware(AdmissionMiddleware, controller=controller)

    @app.get("/api/ping")
    async def ping():
        return {"ok": True}

    @app.get("/projects/{project_id}")
    async def project(project_id: str):
        return {"project": project_id}

    @app.get("/dashboard")
    async def dashboard():
        return {"ok": True}

    @app.get("/static/app.js")
    async def asset():
        return {"asset": True}

    return app


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def controller(store):
    config = parse_security_config({
        "rateLimits": {"api": {"windowMs": 60_000, "max": 2, "message": "Slow down"}},
        "suspiciousActivity": {"threshold": 100},
        "resilience": {"timeoutSeconds": 0.05, "maxAttempts": 1},
    })
    return AdmissionController(config, store, clock=FakeClock())


@pytest.fixture
def client(controller):
    with TestClient(_make_app(controller), headers={"X-Forwarded-For": CLIENT}) as c:
        yield c


# ===================================================================
# TestClientIp
# ===================================================================


class TestClientIp:
    def _request(self, headers, host="10.0.0.1"):
        request = MagicMock()
        request.headers = headers
        request.client = MagicMock(host=host) if host else None
        return request

    def test_forwarded_for_first_hop(self):
        assert get_client_ip(self._request({"x-forwarded-for": "1.1.1.1, 2.2.2.2"})) == "1.1.1.1"

    def test_cloudflare_header(self):
        assert get_client_ip(self._request({"cf-connecting-ip": "3.3.3.3"})) == "3.3.3.3"

    def test_socket_address(self):
        assert get_client_ip(self._request({})) == "10.0.0.1"

    def test_unknown(self):
        assert get_client_ip(self._request({}, host=None)) == "unknown"


# ===================================================================
# TestRateHeaders
# ===================================================================


class TestRateHeaders:
    def test_allowed_headers(self):
        decision = RateLimitDecision(allowed=True, remaining=4, reset_time=T0 + 1500, limit=5)
        headers = rate_limit_headers(decision, now_ms=T0)
        assert headers["X-RateLimit-Limit"] == "5"
        assert headers["X-RateLimit-Remaining"] == "4"
        assert headers["X-RateLimit-Reset"] == "2023-11-14T10:30:01.500000Z"
        assert "Retry-After" not in headers

    def test_retry_after_rounds_up(self):
        decision = RateLimitDecision(allowed=False, remaining=0, reset_time=T0 + 1500, limit=5)
        assert rate_limit_headers(decision, now_ms=T0)["Retry-After"] == "2"


# ===================================================================
# TestAdmission
# ===================================================================


class TestAdmission:
    def test_api_request_carries_rate_headers(self, client):
        response = client.get("/api/ping")
        assert response.status_code == 200
        assert response.headers["x-ratelimit-limit"] == "2"
        assert response.headers["x-ratelimit-remaining"] == "1"
        assert response.headers["x-ratelimit-reset"].endswith("Z")

    def test_api_rate_limit_returns_429(self, client):
        client.get("/api/ping")
        client.get("/api/ping")
        response = client.get("/api/ping")
        assert response.status_code == 429
        assert response.json() == {"error": "Slow down"}
        assert response.headers["retry-after"] == "60"
        assert response.headers["x-ratelimit-remaining"] == "0"

    def test_non_api_paths_are_not_rate_limited(self, client, store):
        for _ in range(5):
            assert client.get("/dashboard").status_code == 200
        assert "x-ratelimit-limit" not in client.get("/dashboard").headers

    def test_callers_are_isolated(self, client):
        client.get("/api/ping")
        client.get("/api/ping")
        response = client.get("/api/ping", headers={"X-Forwarded-For": "198.51.100.1"})
        assert response.status_code == 200


# ===================================================================
# TestBlocking
# ===================================================================


class TestBlocking:
    def test_blocked_caller_gets_403(self, client, controller):
        client.portal.call(controller.block_list.block, CLIENT)
        for path in ("/api/ping", "/dashboard"):
            response = client.get(path)
            assert response.status_code == 403
            assert response.json() == {"error": "Access denied"}

    def test_static_assets_bypass(self, client, controller):
        client.portal.call(controller.block_list.block, CLIENT)
        assert client.get("/static/app.js").status_code == 200


# ===================================================================
# TestOutage
# ===================================================================


class TestOutage:
    def test_fail_closed_returns_503(self, client, store):
        with patch.object(store, "get", side_effect=StoreUnavailable("down")):
            response = client.get("/api/ping")
        assert response.status_code == 503


# ===================================================================
# TestSuspiciousDetection
# ===================================================================


class TestSuspiciousDetection:
    def _records(self, client, store):
        return client.portal.call(store.scan, paths.suspicious(CLIENT))

    def test_bot_user_agent_reported(self, client, store):
        client.get("/dashboard", headers={"User-Agent": "FriendlySpider/2.0", "Referer": "x"})
        (record,) = self._records(client, store).values()
        assert record["activity"] == "bot_traffic"
        assert record["metadata"]["userAgent"] == "FriendlySpider/2.0"
        assert record["metadata"]["pathname"] == "/dashboard"

    def test_regular_browser_not_reported(self, client, store):
        client.get("/dashboard", headers={"User-Agent": "Mozilla/5.0"})
        assert self._records(client, store) == {}

    def test_rapid_requests_reported_when_window_half_used(self, client, store):
        client.get("/projects/p1")
        assert self._records(client, store) == {}

        client.get("/api/ping")
        client.get("/api/ping")
        client.get("/projects/p1")
        (record,) = self._records(client, store).values()
        assert record["activity"] == "rapid_requests"
        assert record["metadata"]["remaining"] == 0

    def test_peek_does_not_consume_slots(self, client):
        for _ in range(5):
            client.get("/projects/p1")
        assert client.get("/api/ping").status_code == 200
