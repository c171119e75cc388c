"""
Unit tests for api/routes/health.py: health and monitoring endpoints.
"""
import shutil
from unittest.mock import AsyncMock, patch


class TestHealthCheck:
    """Test GET /health."""

    def test_health_returns_200(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200

    def test_health_response_fields(self, client):
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert isinstance(data["timestamp"], float)

    def test_security_headers(self, client):
        resp = client.get("/health")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"


class TestDetailedHealth:
    """Test GET /api/health/detailed."""

    def test_all_components_healthy(self, client):
        data = client.get("/api/health/detailed").json()
        assert data["status"] == "healthy"
        assert data["components"]["cache"] == {"healthy": True, "backend": "memory"}
        assert data["components"]["database"] == {"healthy": True}
        assert data["components"]["storage"] == {"healthy": True}

    def test_cache_failure_degrades(self, client, container):
        with patch.object(container.cache, "ping", AsyncMock(side_effect=ConnectionError("down"))):
            data = client.get("/api/health/detailed").json()

        assert data["status"] == "degraded"
        assert data["components"]["cache"]["healthy"] is False
        assert "down" in data["components"]["cache_error"]

    def test_missing_storage_degrades(self, client, container):
        shutil.rmtree(container.storage.root_dir)
        data = client.get("/api/health/detailed").json()
        assert data["status"] == "degraded"
        assert data["components"]["storage"] == {"healthy": False}
