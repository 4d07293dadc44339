"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 with status, version and database fields
  - No authentication required
  - 503 "degraded" when the database does not answer
"""

from __future__ import annotations


def test_health_returns_200(api_client):
    """Health endpoint returns 200 with status, version and database."""
    client, _, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert "version" in data
    assert data["database"] == "ok"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _, _ = api_client
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_health_degraded_when_database_down(api_client, monkeypatch):
    client, store, _ = api_client
    monkeypatch.setattr(store, "ping", lambda: False)
    resp = client.get("/api/v1/health")
    assert resp.status_code == 503
    assert resp.json()["status"] == "degraded"
    assert resp.json()["database"] == "unavailable"
