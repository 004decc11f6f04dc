import asyncio

import pytest
from fastapi.testclient import TestClient

from chickenrun import main, ws_manager
from chickenrun.db import SessionStore
from chickenrun.ws_manager import WebSocketManager

from helpers import make_engine


@pytest.fixture
def engine(tmp_path, monkeypatch):
    store = SessionStore(str(tmp_path / "api.db"), "api")
    store.init_db()
    engine = make_engine(crash_lane=0, store=store)
    manager = WebSocketManager(engine)
    engine.on_event = manager.on_engine_event
    monkeypatch.setattr(main, "engine", engine)
    monkeypatch.setattr(main, "manager", manager)
    engine.start(0)
    return engine


@pytest.fixture
def client():
    # no context manager: the startup hook and its endless game loop stay off
    return TestClient(main.app)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_state(engine, client):
    data = client.get("/state").json()
    assert data["phase"] == "betting"
    assert data["round"] == 1
    assert data["display"]["phase_label"] == "BETTING"
    assert data["display"]["balance"] == "1,000.00"


def test_bet_then_rejected_second_bet(engine, client):
    resp = client.post("/bet", json={"amount": 50})
    assert resp.status_code == 200
    assert resp.json()["balance"] == 950

    resp = client.post("/bet", json={"amount": 50})
    assert resp.status_code == 400
    assert resp.json() == {"ok": False, "error": "already-bet"}
    assert engine.session.balance == 950


@pytest.mark.parametrize("amount", ["ten", "50", True])
def test_bet_invalid_amount(engine, client, amount):
    resp = client.post("/bet", json={"amount": amount})
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid-amount"
    assert engine.session.balance == 1000


def test_cash_out(engine, client):
    assert client.post("/cashout").json()["error"] == "wrong-phase"

    client.post("/bet", json={"amount": 100})
    engine.tick(33)  # crossing lane 4
    data = client.post("/cashout").json()
    assert data["ok"]
    assert data["multiplier"] == 2.0
    assert data["amount"] == pytest.approx(300)
    assert data["balance"] == pytest.approx(1200)


def test_reset_and_add_balance(engine, client):
    assert client.post("/add-balance").json() == {"ok": True, "balance": 2000}
    assert client.post("/reset").json() == {"ok": True, "balance": 1000}
    assert engine.session.round == 0


def test_websocket_bet_flow(engine, client):
    with client.websocket_connect("/ws") as ws:
        first = ws.receive_json()
        assert first["type"] == "state"
        assert first["data"]["phase"] == "betting"

        ws.send_json({"type": "place_bet", "amount": 25})
        assert ws.receive_json() == {"type": "bet_confirm", "data": {"amount": 25}}
        assert ws.receive_json() == {"type": "balance_update", "data": {"balance": 975}}

        ws.send_json({"type": "place_bet", "amount": 25})
        assert ws.receive_json() == {"type": "bet_error", "data": {"reason": "already-bet"}}

        ws.send_json({"type": "cash_out"})
        assert ws.receive_json() == {"type": "cashout_error", "data": {"reason": "wrong-phase"}}

        ws.send_json({"type": "dance"})
        assert ws.receive_json()["type"] == "error"


@pytest.fixture
def analytics(monkeypatch):
    calls = []

    def fake_log_event(event_type, payload=None):
        calls.append(("event", event_type, payload))
        return asyncio.sleep(0)

    def fake_log_round(**row):
        calls.append(("round", row["status"], row))
        return asyncio.sleep(0)

    monkeypatch.setattr(ws_manager, "log_event", fake_log_event)
    monkeypatch.setattr(ws_manager, "log_round", fake_log_round)
    return calls


def test_rest_intents_are_logged(engine, client, analytics):
    client.post("/bet", json={"amount": 100})
    assert analytics == [("event", "bet_placed", {"round": 1, "amount": 100.0, "balance": 900.0})]

    engine.tick(33)
    del analytics[:]
    client.post("/cashout")
    assert [c[:2] for c in analytics] == [("event", "cash_out")]
    assert analytics[0][2]["win_amount"] == pytest.approx(300)

    del analytics[:]
    client.post("/add-balance")
    client.post("/reset")
    assert [c[:2] for c in analytics] == [("event", "test_balance_added"), ("event", "progress_reset")]


def test_settled_round_logs_event_and_round_row(engine, analytics):
    manager = main.manager

    async def run_round():
        engine.tick(52)
        assert manager._tasks
        await asyncio.gather(*manager._tasks)

    asyncio.run(run_round())
    assert [c[:2] for c in analytics] == [
        ("event", "round_resolved"),
        ("event", "round_settled"),
        ("round", "safe"),
    ]
    row = analytics[2][2]
    assert row["round"] == 1
    assert row["multiplier"] == 4.0
    assert row["player_status"] is None
