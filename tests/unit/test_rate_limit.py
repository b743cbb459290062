"""
Unit tests for RateLimitMiddleware.

Uses a minimal FastAPI app so buckets start fresh for each test.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from hlsstreamer.middleware.rate_limit import RateLimitMiddleware


@pytest.fixture
def client():
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, requests_per_second=0.01, burst=2)

    @app.post("/api/update")
    async def update():
        return {"ok": True}

    @app.get("/api/status")
    async def status():
        return {"ok": True}

    @app.post("/metrics")
    async def metrics():
        return {"ok": True}

    return TestClient(app)


class TestRateLimit:
    """Tests for the token bucket."""

    def test_allows_burst_then_429(self, client):
        """Should allow `burst` requests and reject the next one."""
        headers = {"X-Forwarded-For": "203.0.113.1"}

        assert client.post("/api/update", headers=headers).status_code == 200
        assert client.post("/api/update", headers=headers).status_code == 200
        response = client.post("/api/update", headers=headers)

        assert response.status_code == 429
        assert response.json()["code"] == "RATE_LIMIT_EXCEEDED"
        assert int(response.headers["Retry-After"]) >= 1

    def test_buckets_are_per_client(self, client):
        """Should not share tokens between client IPs."""
        for _ in range(3):
            client.post("/api/update", headers={"X-Forwarded-For": "203.0.113.2"})

        response = client.post("/api/update", headers={"X-Real-IP": "203.0.113.3"})

        assert response.status_code == 200

    def test_reads_not_limited(self, client):
        """Should never limit GET requests."""
        headers = {"X-Forwarded-For": "203.0.113.4"}

        for _ in range(5):
            assert client.get("/api/status", headers=headers).status_code == 200

    def test_exempt_paths(self, client):
        """Should never limit exempt paths."""
        headers = {"X-Forwarded-For": "203.0.113.5"}

        for _ in range(5):
            assert client.post("/metrics", headers=headers).status_code == 200

    def test_forwarded_for_uses_first_address(self, client):
        """Should key the bucket on the first forwarded address."""
        for _ in range(2):
            client.post("/api/update", headers={"X-Forwarded-For": "203.0.113.6, 10.0.0.1"})

        response = client.post("/api/update", headers={"X-Forwarded-For": "203.0.113.6"})

        assert response.status_code == 429
