# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring,protected-access
# pylint: disable=unused-argument,too-few-public-methods,no-member,use-implicit-booleaness-not-comparison,line-too-long
# pylint: disable=redefined-outer-name
import asyncio

import pytest
from fastapi.testclient import TestClient

from config import ACTION_OPEN
from helpers import DummyMQTT, seed_door
from hub import DoorlockHub


async def _seed(store):
    bound = await seed_door(store, floor=2, room_no="201", mac="AA:01")
    unbound = await seed_door(store, floor=2, room_no="202", mac=None)
    return bound, unbound


@pytest.fixture
def app_ctx(store):
    bound, unbound = asyncio.run(_seed(store))
    mqtt = DummyMQTT()
    hub = DoorlockHub(store=store, mqtt=mqtt, floors=[1, 2])
    return TestClient(hub.app), hub, mqtt, bound, unbound


def test_service_health(app_ctx):
    client, *_ = app_ctx
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_send_command(app_ctx):
    client, hub, mqtt, bound, _unbound = app_ctx
    resp = client.post("/api/send", json={"door_id": bound, "command": ACTION_OPEN})
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["message"] == f"{ACTION_OPEN},AA:01"
    assert body["topic"].endswith("2/control")
    assert mqtt.published[0][1] == body["message"]
    assert hub.pipeline.pending_for("AA:01", ACTION_OPEN) == body["cmd_log_id"]

    history = client.get("/api/commands", params={"door_id": bound}).json()
    assert [h["id"] for h in history] == [body["cmd_log_id"]]
    assert history[0]["ack_at"] is None


@pytest.mark.parametrize(
    "payload,status,error",
    [
        ({"door_id": 1, "command": "explode"}, 400, "invalid_command"),
        ({"door_id": 999, "command": ACTION_OPEN}, 404, "door_not_found"),
    ],
)
def test_send_command_errors(app_ctx, payload, status, error):
    client, _hub, mqtt, _bound, _unbound = app_ctx
    resp = client.post("/api/send", json=payload)
    assert resp.status_code == status
    assert resp.json()["detail"]["error"] == error
    assert mqtt.published == []


def test_send_command_unbound(app_ctx):
    client, _hub, mqtt, _bound, unbound = app_ctx
    resp = client.post("/api/send", json={"door_id": unbound, "command": ACTION_OPEN})
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "door_unbound"
    assert mqtt.published == []


def test_send_command_validation(app_ctx):
    client, *_ = app_ctx
    assert client.post("/api/send", json={"door_id": 0, "command": ACTION_OPEN}).status_code == 422
    assert client.post("/api/send", json={"door_id": 1}).status_code == 422


def test_send_command_publish_failure(app_ctx):
    client, _hub, mqtt, bound, _unbound = app_ctx
    mqtt.ok = False
    resp = client.post("/api/send", json={"door_id": bound, "command": ACTION_OPEN})
    assert resp.status_code == 500
    detail = resp.json()["detail"]
    assert detail["error"] == "publish_failed"
    assert isinstance(detail["cmd_log_id"], int)


def test_schedule_crud(app_ctx):
    client, _hub, _mqtt, bound, _unbound = app_ctx
    resp = client.post("/api/schedules/upsert", json={
        "door_id": bound,
        "schedule_date": "2026-03-02",
        "open_time": "08:00",
        "close_time": "18:00:00",
    })
    assert resp.status_code == 200
    window = resp.json()
    assert window["open_time"] == "08:00"
    assert window["close_time"] == "18:00"
    assert window["open_sent_at"] is None
    assert window["mac"] == "AA:01"

    listed = client.get("/api/schedules", params={"date": "2026-03-02"}).json()
    assert [w["id"] for w in listed] == [window["id"]]
    assert client.get("/api/schedules", params={"date": "2026-03-03"}).json() == []

    assert client.delete(f"/api/schedules/{window['id']}").json() == {"ok": True, "deleted": True}
    assert client.delete(f"/api/schedules/{window['id']}").json() == {"ok": True, "deleted": False}


def test_schedule_upsert_unknown_door(app_ctx):
    client, *_ = app_ctx
    resp = client.post("/api/schedules/upsert", json={
        "door_id": 999,
        "schedule_date": "2026-03-02",
        "open_time": "08:00",
        "close_time": "18:00",
    })
    assert resp.status_code == 404


def test_monitoring_endpoints(app_ctx):
    client, _hub, _mqtt, bound, unbound = app_ctx

    doors = client.get("/api/doors").json()
    assert {d["id"] for d in doors} == {bound, unbound}

    health = {r["door_id"]: r for r in client.get("/api/health").json()}
    assert health[bound]["healthy"] is False
    assert health[bound]["last_ping_at"] is None

    downtime = client.get("/api/metrics/downtime-today").json()
    assert {r["door_id"] for r in downtime} == {bound, unbound}
    assert all(r["downtime_min_today"] == 0 for r in downtime)

    counts = client.get("/api/metrics/ping-count").json()
    assert all(r["ping_count_7d"] == 0 for r in counts)


def test_status(app_ctx):
    client, *_ = app_ctx
    stats = client.get("/api/status").json()
    assert stats["pending_acks"] == 0
    assert stats["subscribers"] == 0
    assert stats["mqtt_connected"] is True
    assert "scheduler_ticks" in stats
