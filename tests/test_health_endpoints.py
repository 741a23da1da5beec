# ─────────────────────────────────────────────────────────────────────────────
# Health + Debug Endpoint Tests
# ─────────────────────────────────────────────────────────────────────────────
# Demonstrates: dirty-equals (declarative assertions)
# ─────────────────────────────────────────────────────────────────────────────

import pytest
from dirty_equals import IsInstance, IsNonNegative, IsPositiveInt, IsStr

from greenlight import __version__


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestHealthcheck:
    """GET /v1/healthcheck: no auth, no store I/O."""

    async def test_returns_200(self, client):
        response = await client.get("/v1/healthcheck")
        assert response.status_code == 200

    async def test_body(self, client):
        data = (await client.get("/v1/healthcheck")).json()
        assert data == {
            "status": "available",
            "system_info": {"environment": "testing", "version": __version__},
        }

    async def test_ignores_store(self, client, store):
        """Healthcheck must answer even if the store is wedged."""
        await store._lock.acquire()
        try:
            response = await client.get("/v1/healthcheck")
        finally:
            store._lock.release()
        assert response.status_code == 200


class TestDebugVars:
    """GET /debug/vars: metrics:view only."""

    async def test_anonymous_is_401(self, client):
        assert (await client.get("/debug/vars")).status_code == 401

    async def test_without_permission_is_403(self, client, make_user):
        _, token = await make_user("movies:read")
        assert (await client.get("/debug/vars", headers=_bearer(token))).status_code == 403

    async def test_shape(self, client, make_user):
        _, token = await make_user("metrics:view")
        await client.get("/v1/healthcheck")

        data = (await client.get("/debug/vars", headers=_bearer(token))).json()
        assert data == {
            "version": __version__,
            "total_requests_received": IsNonNegative,
            "total_responses_sent": IsNonNegative,
            "total_processing_time_us": IsNonNegative,
            "total_responses_sent_by_status": IsInstance(dict),
            "latency_p50_ms": IsNonNegative,
            "latency_p95_ms": IsNonNegative,
            "uptime_seconds": IsNonNegative,
            "timestamp": IsNonNegative,
            "database": {
                "backend": "memory",
                "users": IsPositiveInt,
                "tokens": IsNonNegative,
                "movies": 0,
            },
            "rate_limiter": {
                "enabled": False,
                "rps": 2.0,
                "burst": 4,
                "tracked_clients": 0,
            },
        }
        # The /debug/vars request itself is received but not yet answered.
        assert data["total_requests_received"] == data["total_responses_sent"] + 1


class TestDebugMetrics:
    """GET /debug/metrics: Prometheus text exposition."""

    @pytest.fixture
    async def viewer(self, make_user) -> dict[str, str]:
        _, token = await make_user("metrics:view")
        return _bearer(token)

    async def test_content_type(self, client, viewer):
        response = await client.get("/debug/metrics", headers=viewer)
        assert response.status_code == 200
        assert response.headers["content-type"] == IsStr(regex=r"text/plain.*")

    async def test_exposes_counters(self, client, viewer):
        await client.get("/v1/healthcheck")
        body = (await client.get("/debug/metrics", headers=viewer)).text
        assert "greenlight_requests_received_total" in body
        assert 'greenlight_responses_sent_by_status_total{status="200"}' in body
        assert "greenlight_rate_limiter_clients" in body

    async def test_requires_permission(self, client, make_user):
        _, token = await make_user("movies:read", "movies:write")
        assert (await client.get("/debug/metrics", headers=_bearer(token))).status_code == 403
