"""
HTTP tests for the Prahari API.

The app runs without its lifespan, so there is no boundary dataset: country
attribution falls back to keywords, names and coarse bounds.
"""

import json

import pytest
from fastapi.testclient import TestClient

from backend.models import AlertPriority, AlertType, UnifiedAlert
from backend.websocket_manager import ConnectionManager


class TestRoot:

    @pytest.mark.asyncio
    async def test_status(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Prahari"
        assert data["status"] == "operational"


class TestIngest:

    @pytest.mark.asyncio
    async def test_ingest_protests(self, client):
        response = await client.post("/api/ingest/protests", json=[{"country": "France", "severity": "high"}])
        assert response.status_code == 200
        data = response.json()
        assert data["kind"] == "protests"
        assert data["stats"]["processed"] >= 1

    @pytest.mark.asyncio
    async def test_ingest_military(self, client):
        response = await client.post("/api/ingest/military", json={
            "flights": [{"operatorCountry": "Russia", "lat": 48.0, "lon": 30.0}],
            "vessels": [],
        })
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_military_requires_object(self, client):
        response = await client.post("/api/ingest/military", json=[])
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_cascade_reports_alert_count(self, client):
        response = await client.post("/api/ingest/cascade", json=[{
            "source": {"id": "cable-9", "name": "Cable Z"},
            "countriesAffected": [{"country": "TW", "impactLevel": "medium"}],
        }])
        assert response.status_code == 200
        assert response.json() == {"kind": "cascade", "alerts": 1}

    @pytest.mark.asyncio
    async def test_bad_strike_timestamp_is_not_a_server_error(self, client):
        response = await client.post("/api/ingest/strikes", json=[
            {"id": "bad", "latitude": 30.0, "longitude": 52.0, "timestamp": 1e300},
            {"id": "ok", "latitude": 30.0, "longitude": 52.0, "timestamp": 1700000000000},
        ])
        assert response.status_code == 200
        assert response.json()["stats"]["malformed"] >= 1

    @pytest.mark.asyncio
    async def test_unknown_kind(self, client):
        response = await client.post("/api/ingest/earthquakes", json=[])
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_non_list_body(self, client):
        response = await client.post("/api/ingest/protests", json={"country": "France"})
        assert response.status_code == 422


class TestScores:

    @pytest.mark.asyncio
    async def test_refresh_then_read(self, client):
        response = await client.post("/api/refresh")
        assert response.status_code == 200
        data = response.json()
        assert data["scores"] >= 20
        assert "in_learning" in data["learning"]

        response = await client.get("/api/cii")
        body = response.json()
        assert body["count"] == data["scores"]
        scores = [c["score"] for c in body["countries"]]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_country_score(self, client):
        await client.post("/api/refresh")
        response = await client.get("/api/cii/ua")
        assert response.status_code == 200
        assert response.json()["code"] == "UA"

    @pytest.mark.asyncio
    async def test_unknown_country_score(self, client):
        response = await client.get("/api/cii/ZZ")
        assert response.status_code == 404


class TestReadEndpoints:

    @pytest.mark.asyncio
    async def test_alerts(self, client):
        response = await client.get("/api/alerts", params={"hours": 6})
        assert response.status_code == 200
        assert "alerts" in response.json()

    @pytest.mark.asyncio
    async def test_alert_hours_bounded(self, client):
        response = await client.get("/api/alerts", params={"hours": 500})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_alert_counts(self, client):
        response = await client.get("/api/alerts/counts")
        assert set(response.json()) == {"critical", "high", "medium", "low"}

    @pytest.mark.asyncio
    async def test_signals(self, client):
        response = await client.get("/api/signals")
        assert response.status_code == 200
        assert "total_signals" in response.json()

    @pytest.mark.asyncio
    async def test_strategic_risk(self, client):
        response = await client.get("/api/strategic-risk")
        assert response.status_code == 200
        assert 0 <= response.json()["composite_score"] <= 100

    @pytest.mark.asyncio
    async def test_ingest_stats(self, client):
        response = await client.get("/api/ingest-stats")
        assert set(response.json()) >= {"processed", "unmapped", "malformed", "rate"}

    @pytest.mark.asyncio
    async def test_learning(self, client):
        response = await client.get("/api/learning")
        assert response.json()["in_learning"] is True


class FakeWebSocket:
    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail

    async def accept(self):
        pass

    async def send_text(self, text: str):
        if self.fail:
            raise RuntimeError("closed")
        self.sent.append(json.loads(text))


def _alert(alert_id: str, priority: AlertPriority) -> UnifiedAlert:
    return UnifiedAlert(id=alert_id, type=AlertType.CASCADE, priority=priority, title="t", summary="s")


class TestConnectionManager:

    @pytest.mark.asyncio
    async def test_findings_filtered_per_client(self):
        manager = ConnectionManager()
        everything, urgent = FakeWebSocket(), FakeWebSocket()
        await manager.connect(everything)
        await manager.connect(urgent)
        assert manager.handle_message(urgent, json.dumps({"action": "subscribe", "min_priority": "high"}))

        alerts = [_alert("a", AlertPriority.LOW), _alert("b", AlertPriority.CRITICAL)]
        await manager.broadcast_findings(alerts, {"critical": 1})

        assert [a["id"] for a in everything.sent[0]["alerts"]] == ["a", "b"]
        assert [a["id"] for a in urgent.sent[0]["alerts"]] == ["b"]
        assert urgent.sent[0]["action"] == "findings_updated"

    @pytest.mark.asyncio
    async def test_client_with_nothing_visible_is_skipped(self):
        manager = ConnectionManager()
        ws = FakeWebSocket()
        await manager.connect(ws)
        manager.handle_message(ws, json.dumps({"action": "subscribe", "min_priority": "critical"}))
        await manager.broadcast_findings([_alert("a", AlertPriority.MEDIUM)], {})
        assert ws.sent == []

    @pytest.mark.asyncio
    async def test_failed_send_drops_client(self):
        manager = ConnectionManager()
        ws = FakeWebSocket(fail=True)
        await manager.connect(ws)
        await manager.broadcast_findings([_alert("a", AlertPriority.LOW)], {})
        assert manager.connection_count == 0

    @pytest.mark.parametrize("raw", [
        "not json",
        json.dumps(["subscribe"]),
        json.dumps({"action": "ping"}),
        json.dumps({"action": "subscribe", "min_priority": "urgent"}),
    ])
    def test_rejects_unknown_messages(self, raw):
        assert ConnectionManager().handle_message(FakeWebSocket(), raw) is False


def test_websocket_initial_state_and_subscribe():
    from backend.main import app

    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        initial = ws.receive_json()
        assert initial["action"] == "initial_state"
        assert "learning" in initial

        ws.send_text(json.dumps({"action": "subscribe", "min_priority": "critical"}))
        reply = ws.receive_json()
        assert reply["action"] == "subscribed"
        assert all(a["priority"] == "critical" for a in reply["alerts"])
