from __future__ import annotations

import base64
import json

from fastapi.testclient import TestClient

from llm_room.api import create_app
from llm_room.config import AppConfig
from llm_room.room import RoomRuntime
from llm_room.room.inference import InferenceClient, InferenceRequest, InferenceResult
from llm_room.room.keys import resolve_room
from llm_room.room.payments import RECEIPT_HEADER
from llm_room.room.store import MemoryStore


class EchoInference(InferenceClient):
    def complete(self, request: InferenceRequest) -> InferenceResult:
        return InferenceResult(text=f"echo: {request.messages[-1]['content']}", token_usage=3)


CLAIM = {
    "roomId": "lobby",
    "hostAddr": "0xhost",
    "recvAddr": "0xrecv",
    "modelEndpoint": "http://127.0.0.1:8080/v1",
    "modelToken": "secret",
    "modelId": "local-model",
    "rateUnitPrice": 0.001,
}


def _make_client(tmp_path, *, payments_required: bool = False) -> tuple[TestClient, RoomRuntime]:
    cfg = AppConfig()
    cfg.store.backend = "memory"
    cfg.logging.logs_dir = str(tmp_path / "logs")
    cfg.payments.required = payments_required
    runtime = RoomRuntime(cfg, store=MemoryStore(), inference=EchoInference(), run_id="test_api")
    return TestClient(create_app(runtime)), runtime


def test_health_and_events(tmp_path) -> None:
    client, _ = _make_client(tmp_path)

    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["store"] == "memory"

    events = client.get("/events", params={"limit": 10}).json()
    assert events["success"] is True
    assert events["events"][0]["event_type"] == "runtime_started"


def test_claim_state_and_release(tmp_path) -> None:
    client, _ = _make_client(tmp_path)

    claimed = client.post("/api/room/claim-host", json=CLAIM)
    assert claimed.status_code == 200
    assert claimed.json()["host"]["hostAddr"] == "0xhost"
    assert "modelToken" not in claimed.json()["host"]

    state = client.get("/api/room/state", params={"roomId": "lobby"}).json()
    assert state["online"] is True
    assert state["roomId"] == "lobby"
    assert state["pricing"]["defaultGuestSeed"] == 100_000_000
    assert state["presence"] == {"heartbeatIntervalSeconds": 10.0, "hostTtlSeconds": 30}

    conflict = client.post("/api/room/claim-host", json={**CLAIM, "hostAddr": "0xother"})
    assert conflict.status_code == 409
    assert conflict.json()["code"] == "room_conflict"

    forbidden = client.post("/api/room/release-host", json={"roomId": "lobby", "hostAddr": "0xother"})
    assert forbidden.status_code == 403

    released = client.post("/api/room/release-host", json={"roomId": "lobby", "hostAddr": "0xhost"})
    assert released.json() == {"ok": True, "released": True}
    assert client.get("/api/room/state", params={"roomId": "lobby"}).json()["online"] is False


def test_claim_validation_and_busy(tmp_path) -> None:
    client, runtime = _make_client(tmp_path)

    missing = client.post("/api/room/claim-host", json={"roomId": "lobby", "hostAddr": "0xhost"})
    assert missing.status_code == 400
    assert missing.json()["code"] == "invalid_request"

    negative = client.post("/api/room/claim-host", json={**CLAIM, "rateUnitPrice": -1})
    assert negative.status_code == 400

    runtime.store.set_if_absent(resolve_room("lobby").lock, "someone", 10)
    busy = client.post("/api/room/claim-host", json=CLAIM)
    assert busy.status_code == 429
    assert busy.json()["code"] == "claim_busy"


def test_claim_without_rate_uses_default(tmp_path) -> None:
    client, _ = _make_client(tmp_path)
    body = {key: value for key, value in CLAIM.items() if key != "rateUnitPrice"}

    claimed = client.post("/api/room/claim-host", json=body)
    assert claimed.status_code == 200
    assert claimed.json()["host"]["rateUnitPrice"] == 0.001


def test_heartbeat_and_disconnect(tmp_path) -> None:
    client, _ = _make_client(tmp_path)

    not_found = client.post("/api/room/heartbeat", json={"roomId": "lobby", "hostAddr": "0xhost"})
    assert not_found.status_code == 404

    client.post("/api/room/claim-host", json=CLAIM)
    assert client.post("/api/room/heartbeat", json={"roomId": "lobby", "hostAddr": "0xhost"}).status_code == 200
    assert client.post("/api/room/heartbeat", json={"roomId": "lobby", "hostAddr": "0xnope"}).status_code == 403
    assert client.post("/api/room/heartbeat", json={"roomId": "lobby"}).status_code == 400

    offline = client.post("/api/room/disconnect", json={"roomId": "lobby", "hostAddr": "0xhost"})
    assert offline.status_code == 200
    assert offline.json()["host"]["connected"] is False

    still_offline = client.post("/api/room/heartbeat", json={"roomId": "lobby", "hostAddr": "0xhost"})
    assert still_offline.json()["host"]["connected"] is False
    assert client.get("/api/room/state", params={"roomId": "lobby"}).json()["online"] is False

    back = client.post("/api/room/reconnect", json={"roomId": "lobby", "hostAddr": "0xhost"})
    assert back.status_code == 200
    assert back.json()["host"]["connected"] is True
    assert client.get("/api/room/state", params={"roomId": "lobby"}).json()["online"] is True
    assert client.post("/api/room/reconnect", json={"roomId": "lobby", "hostAddr": "0xnope"}).status_code == 403


def test_balance_requires_address_and_seeds_once(tmp_path) -> None:
    client, _ = _make_client(tmp_path)

    assert client.get("/api/room/balance", params={"roomId": "lobby"}).status_code == 400

    seeded = client.get("/api/room/balance", params={"roomId": "lobby", "address": "0xguest", "seed": 5000})
    assert seeded.json()["balanceMicroUnits"] == 5000
    again = client.get("/api/room/balance", params={"roomId": "lobby", "addr": "0xguest", "seed": 1})
    assert again.json()["balanceMicroUnits"] == 5000


def test_message_round_trip_and_polling(tmp_path) -> None:
    client, _ = _make_client(tmp_path)
    client.post("/api/room/claim-host", json=CLAIM)
    client.get("/api/room/balance", params={"roomId": "lobby", "address": "0xguest", "seed": 100_000_000})

    posted = client.post(
        "/api/room/message",
        json={"roomId": "lobby", "from": "0xguest", "text": "ping", "tokenBudget": 256},
    )
    assert posted.status_code == 200
    body = posted.json()
    assert body["state"] == "settled"
    assert body["chargedMicroUnits"] == 1000
    assert body["response"]["text"] == "echo: ping"
    assert body["prompt"]["from"] == "0xguest"

    receipt = json.loads(base64.b64decode(posted.headers[RECEIPT_HEADER]))
    assert receipt["success"] is True
    assert receipt["amount"] == "1000"

    listing = client.get("/api/room/messages", params={"roomId": "lobby"}).json()
    assert [item["kind"] for item in listing["messages"]] == ["prompt", "response"]
    cursor = listing["cursor"]
    assert cursor == max(item["createdAt"] for item in listing["messages"])
    assert client.get("/api/room/messages", params={"roomId": "lobby", "after": cursor}).json()["messages"] == []

    balance = client.get("/api/room/balance", params={"roomId": "lobby", "address": "0xguest"}).json()
    assert balance["balanceMicroUnits"] == 100_000_000 - 1000


def test_message_failures_stay_in_band(tmp_path) -> None:
    client, _ = _make_client(tmp_path)

    blank = client.post("/api/room/message", json={"roomId": "lobby", "from": "0xguest", "text": "  "})
    assert blank.status_code == 400

    no_host = client.post("/api/room/message", json={"roomId": "lobby", "from": "0xguest", "text": "hello"})
    assert no_host.status_code == 200
    assert no_host.json()["state"] == "rejected"

    client.post("/api/room/claim-host", json=CLAIM)
    broke = client.post("/api/room/message", json={"roomId": "lobby", "from": "0xpoor", "text": "hello"})
    assert broke.status_code == 200
    assert broke.json()["state"] == "rejected"
    assert broke.json()["system"]["text"].startswith("Insufficient balance")


def test_paid_route_issues_402_challenge(tmp_path) -> None:
    client, _ = _make_client(tmp_path, payments_required=True)
    client.post("/api/room/claim-host", json=CLAIM)
    client.get("/api/room/balance", params={"roomId": "lobby", "address": "0xguest", "seed": 10_000})
    message = {"roomId": "lobby", "from": "0xguest", "text": "hello", "tokenBudget": 1500}

    challenge = client.post("/api/room/message", json=message)
    assert challenge.status_code == 402
    terms = challenge.json()
    assert terms["x402Version"] == 1
    assert terms["accepts"][0]["maxAmountRequired"] == "2000"
    assert terms["accepts"][0]["payTo"] == "0xrecv"
    # The challenge is not a prompt.
    assert client.get("/api/room/messages", params={"roomId": "lobby"}).json()["messages"] == []

    paid = client.post("/api/room/message", json=message, headers={"X-PAYMENT": "c2lnbmVk"})
    assert paid.status_code == 200
    assert paid.json()["state"] == "settled"
    assert RECEIPT_HEADER in paid.headers


def test_events_filter_by_type_and_room(tmp_path) -> None:
    client, _ = _make_client(tmp_path)
    client.post("/api/room/claim-host", json=CLAIM)
    client.post("/api/room/claim-host", json={**CLAIM, "roomId": "other"})

    claimed = client.get("/events", params={"type": "host_claimed"}).json()
    assert claimed["count"] == 2

    lobby = client.get("/events", params={"roomId": "lobby"}).json()
    assert [event["event_type"] for event in lobby["events"]] == ["host_claimed"]
