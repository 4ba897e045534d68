"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and database fields
  - No authentication required
  - 503 "degraded" when the database cannot be reached
"""

from __future__ import annotations

from sqlalchemy.exc import OperationalError


def test_health_returns_200(api_client):
    """Health endpoint returns 200 with status, version and database."""
    client, _token, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["version"] == "1.0.0"
    assert data["database"] == "ok"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers or cookies."""
    client, _, _ = api_client
    client.cookies.clear()
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_health_reports_database_outage(api_client, monkeypatch):
    """A failing database ping turns the response into 503 degraded."""
    client, _, _ = api_client

    def broken_ping():
        raise OperationalError("SELECT 1", {}, Exception("database is gone"))

    monkeypatch.setattr(client.app.state.account_store, "ping", broken_ping)
    resp = client.get("/api/v1/health")
    assert resp.status_code == 503
    assert resp.json()["status"] == "degraded"
    assert resp.json()["database"] == "unavailable"
