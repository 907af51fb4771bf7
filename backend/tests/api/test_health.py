"""Health & readiness endpoints."""

import merchant.infrastructure.database as db_module


async def test_liveness(client):
    resp = await client.get("/api/v1/health/")

    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


async def test_ready_when_db_and_session_up(client):
    resp = await client.get("/api/v1/health/ready")

    assert resp.status_code == 200
    assert resp.json() == {
        "status": "ready",
        "checks": {"database": "healthy", "trading_session": "connected"},
    }


async def test_not_ready_when_session_disconnected(client, platform):
    platform.steam_id = None

    resp = await client.get("/api/v1/health/ready")

    assert resp.status_code == 503
    assert resp.json()["checks"]["trading_session"] == "disconnected"


async def test_not_ready_without_database(client, monkeypatch):
    monkeypatch.setattr(db_module, "db_manager", None)

    resp = await client.get("/api/v1/health/ready")

    assert resp.status_code == 503
    assert resp.json()["checks"]["database"] == "unavailable"
