"""
HTTP API tests: chat flow, sessions, and inventory refresh.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import FakeCompletion, StaticLoader, make_snapshot

from cellar_assistant.app import create_app
from cellar_assistant.assistant import COMPLETION_FAILED_REPLY
from cellar_assistant.inventory_loader import FETCH_FAILED_WARNING, InventoryLoader, InventorySnapshot


@pytest.fixture
def completion():
    return FakeCompletion(reply="Yes, Felsina Chianti at 450,-")


@pytest.fixture
def client(settings, completion):
    app = create_app(settings, completion=completion, loader=StaticLoader(make_snapshot()))
    with TestClient(app) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "inventory_available": True}


def test_inventory_loaded_on_startup(client):
    data = client.get("/api/inventory").json()
    assert data["available"] is True
    assert data["record_count"] == 3
    assert data["warning"] is None


def test_chat_round_trip(client, completion):
    response = client.post("/api/chat", json={"message": "chianti by the glass?"})
    assert response.status_code == 200
    data = response.json()
    assert data["accepted"] is True
    assert data["answer_text"] == "Yes, Felsina Chianti at 450,-"
    assert data["session_id"]
    assert len(completion.requests) == 1

    transcript = client.get(f"/api/sessions/{data['session_id']}").json()
    assert [m["role"] for m in transcript["messages"]] == ["assistant", "user", "assistant"]


def test_chat_continues_existing_session(client, completion):
    first = client.post("/api/chat", json={"message": "chianti?"}).json()
    client.post("/api/chat", json={"message": "and riesling?", "session_id": first["session_id"]})

    second_request = completion.requests[1]
    texts = [entry["parts"][0]["text"] for entry in second_request.contents]
    assert texts[-3:] == ["chianti?", "Yes, Felsina Chianti at 450,-", "and riesling?"]


def test_blank_message_not_accepted(client, completion):
    data = client.post("/api/chat", json={"message": "  "}).json()
    assert data["accepted"] is False
    assert data["reason"] == "empty_message"
    assert completion.requests == []


def test_completion_failure_returns_apology(settings):
    app = create_app(
        settings,
        completion=FakeCompletion(error=RuntimeError("boom")),
        loader=StaticLoader(make_snapshot()),
    )
    with TestClient(app) as test_client:
        data = test_client.post("/api/chat", json={"message": "chianti"}).json()
    assert data["accepted"] is True
    assert data["answer_text"] == COMPLETION_FAILED_REPLY


def test_unavailable_inventory_blocks_chat_until_refresh(settings, completion):
    loader = StaticLoader(
        InventorySnapshot(available=False, error=FETCH_FAILED_WARNING),
        make_snapshot(),
    )
    app = create_app(settings, completion=completion, loader=loader)
    with TestClient(app) as test_client:
        status = test_client.get("/api/inventory").json()
        assert status["available"] is False
        assert status["warning"] == FETCH_FAILED_WARNING

        data = test_client.post("/api/chat", json={"message": "chianti"}).json()
        assert data == {
            "session_id": data["session_id"],
            "accepted": False,
            "answer_text": None,
            "reason": "no_inventory",
        }

        refreshed = test_client.post("/api/inventory/refresh").json()
        assert refreshed["available"] is True

        data = test_client.post("/api/chat", json={"message": "chianti", "session_id": data["session_id"]}).json()
        assert data["accepted"] is True


def test_list_sessions(client):
    client.post("/api/chat", json={"message": "first", "session_id": "one"})
    client.post("/api/chat", json={"message": "second", "session_id": "two"})
    sessions = client.get("/api/sessions").json()
    assert {s["session_id"] for s in sessions} == {"one", "two"}
    assert {s["title"] for s in sessions} == {"first", "second"}


def test_unknown_session_is_404(client):
    assert client.get("/api/sessions/nope").status_code == 404


def test_startup_load_can_be_disabled(settings, completion):
    loader = StaticLoader(make_snapshot())
    app = create_app(settings, completion=completion, loader=loader, load_on_startup=False)
    with TestClient(app) as test_client:
        assert test_client.get("/api/inventory").json()["available"] is False
    assert loader.calls == 0


def test_malformed_inventory_url_starts_unavailable(settings, completion):
    app = create_app(settings, completion=completion, loader=InventoryLoader(url="http://[::1"))
    with TestClient(app) as test_client:
        assert test_client.get("/api/health").status_code == 200
        refreshed = test_client.post("/api/inventory/refresh")
        assert refreshed.status_code == 200
        assert refreshed.json()["available"] is False
        assert refreshed.json()["warning"] == FETCH_FAILED_WARNING
