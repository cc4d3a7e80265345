"""Integration tests for the health endpoints."""

import pytest

import pkgbroker

pytestmark = [pytest.mark.integration]


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["version"] == pkgbroker.__version__


def test_liveness(client):
    response = client.get("/health/live")

    assert response.status_code == 200
    assert response.json()["status"] == "alive"


def test_readiness(client):
    response = client.get("/health/ready")

    # Storage may report critical on a nearly full disk
    assert response.status_code in (200, 503)
    checks = response.json()["checks"]
    assert checks["database"]["status"] == "healthy"
    assert checks["kv"]["status"] == "healthy"
    assert checks["storage"]["driver"] == "local"


def test_health_open_to_composer_1_clients(client):
    response = client.get("/health", headers={"User-Agent": "Composer/1.10.0"})

    assert response.status_code == 200


def test_readiness_reports_kv_failure(client, kv, monkeypatch):
    async def broken_ping():
        raise ConnectionError("connection refused")

    monkeypatch.setattr(kv, "ping", broken_ping)

    response = client.get("/health/ready")

    assert response.status_code == 503
    body = response.json()
    assert "kv" in body["failed"]
    assert "connection refused" in body["checks"]["kv"]["error"]
