"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from app.main import app

client = TestClient(app)


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"


def test_readyz_endpoint_all_services_healthy():
    """Test readiness endpoint when all services are healthy."""
    with (
        patch("app.routes.health.fast_redis.ping", new_callable=AsyncMock, return_value=True),
        patch(
            "app.routes.health.db_health_check",
            new_callable=AsyncMock,
            return_value={"healthy": True},
        ),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    assert data["checks"]["redis"]["ok"] is True
    assert data["checks"]["database"]["ok"] is True


def test_readyz_endpoint_redis_unhealthy():
    """Redis backs only the rule cache, so the service stays ready."""
    with (
        patch("app.routes.health.fast_redis.ping", new_callable=AsyncMock, return_value=False),
        patch(
            "app.routes.health.db_health_check",
            new_callable=AsyncMock,
            return_value={"healthy": True},
        ),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    assert data["checks"]["redis"]["ok"] is False
    assert data["checks"]["redis"]["required"] is False


def test_readyz_endpoint_database_unhealthy():
    """Test readiness endpoint when the database is down."""
    with (
        patch("app.routes.health.fast_redis.ping", new_callable=AsyncMock, return_value=True),
        patch(
            "app.routes.health.db_health_check",
            new_callable=AsyncMock,
            return_value={"healthy": False, "error": "Connection failed"},
        ),
    ):
        response = client.get("/readyz")

    assert response.status_code == 503
    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["error"] == "Connection failed"


def test_readyz_includes_latency_metrics():
    """Test that readiness checks include latency metrics."""
    with (
        patch("app.routes.health.fast_redis.ping", new_callable=AsyncMock, return_value=True),
        patch(
            "app.routes.health.db_health_check",
            new_callable=AsyncMock,
            return_value={"healthy": True},
        ),
    ):
        response = client.get("/readyz")

    checks = response.json()["checks"]
    assert isinstance(checks["redis"]["latency_ms"], (int, float))
    assert isinstance(checks["database"]["latency_ms"], (int, float))
    assert checks["worker_pool"]["running"] is False
