"""
tests/test_health.py -- Integration tests for GET / and GET /api.

Covers:
  - 200 response with status, name, version and database fields
  - Database reachability reported as 'unavailable' when the ping fails
  - No authentication required
  - The API index lists every resource collection
"""

from __future__ import annotations

from sqlalchemy.exc import OperationalError

from api.main import API_NAME, API_VERSION, ENDPOINTS


def _failing_ping():
    raise OperationalError("SELECT 1", {}, Exception("database is locked"))


def test_health_returns_200_with_database_status(api_client):
    """Health endpoint returns 200 with status, version and database."""
    resp = api_client.get("/")
    assert resp.status_code == 200
    data = resp.json()
    assert data == {"status": "ok", "name": API_NAME, "version": API_VERSION, "database": "ok"}


def test_health_reports_unreachable_database(api_client, seeded_store, monkeypatch):
    monkeypatch.setattr(seeded_store, "ping", _failing_ping)
    resp = api_client.get("/")
    assert resp.status_code == 200
    assert resp.json()["database"] == "unavailable"


def test_health_requires_no_auth(api_client):
    """A bogus token on a public endpoint is ignored, not rejected."""
    resp = api_client.get("/", headers={"Authorization": "Token nope"})
    assert resp.status_code == 200


def test_api_index(api_client):
    data = api_client.get("/api").json()
    assert data["version"] == API_VERSION
    assert data["endpoints"] == ENDPOINTS
