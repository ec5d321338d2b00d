import pytest


@pytest.mark.anyio("asyncio")
async def test_healthcheck(client):
    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] in {"ok", "degraded"}
    assert payload["db_status"] == "ok"
    assert payload["migrations_status"] in {"up_to_date", "out_of_date", "unknown"}
    assert isinstance(payload["scheduler_config_enabled"], bool)
    assert payload["scheduler_running"] is False
    assert payload["scheduler_lock"]["status"] == "none"
    assert payload["notifications"] == {"webhook_configured": False, "webhook_signed": False}
    assert payload["features"]["auto_release"] == {"enabled": True, "grace_hours": 72}
    assert payload["features"]["dispute_escalation"]["enabled"] is False
    assert payload["features"]["party_self_resolution"] is True


@pytest.mark.anyio("asyncio")
async def test_health_degrades_on_db_failure(monkeypatch, client):
    class BrokenEngine:
        def connect(self):  # pragma: no cover - simple stub
            raise RuntimeError("DB down")

    monkeypatch.setattr("app.routers.health.get_engine", lambda: BrokenEngine())

    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["db_status"] == "error"
    assert payload["migrations_status"] == "unknown"
    assert payload["db_ok"] is False
    assert payload["migrations_ok"] is False
