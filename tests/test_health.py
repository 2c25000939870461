"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' while the database is reachable
  - degraded status when the database probe fails
  - No authentication required
"""

from __future__ import annotations

from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from api.main import VERSION


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    client, _service = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == VERSION
    assert data["components"] == {"app": "ok", "database": "ok"}


def test_health_reports_degraded_when_database_fails(api_client):
    """A failing database probe reports degraded without leaking the error text."""
    client, service = api_client
    boom = OperationalError("SELECT 1", {}, Exception("database is locked"))
    with patch.object(service.users, "ping", side_effect=boom):
        resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "error"
    assert "locked" not in resp.text


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _service = api_client
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
