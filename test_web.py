"""HTTP surface for listen mode."""

import base64
import time

import pytest
from fastapi.testclient import TestClient

import web.state as _state
from agent.execution import OrchestratorDeps
from agent.retry_queue import RetryQueueManager
from channels import WebChannel
from conftest import ScriptedService, text_events
from web import app


@pytest.fixture
def client(store, policy, app_config):
    channel = WebChannel()
    service = ScriptedService([text_events("Hello from the relay.")])
    manager = RetryQueueManager(store, channel, liveness_enabled=False)
    deps = OrchestratorDeps(store=store, channel=channel, service=service, policy=policy,
                            config=app_config, queue_manager=manager, reconcile=False)
    _state.configure(deps, manager, run_worker=False)
    with TestClient(app) as c:
        c.service = service
        yield c
    _state.configure(None)


def _wait_for_messages(client, cid, count, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        messages = client.get(f"/api/conversations/{cid}/messages").json()["messages"]
        if len(messages) >= count:
            return messages
        time.sleep(0.05)
    raise AssertionError(f"expected {count} message(s) for {cid}")


def test_post_message_runs_the_turn_loop(client):
    response = client.post("/api/messages", json={"conversation_id": "42", "text": "say hello"})
    assert response.status_code == 202
    assert response.json() == {"ok": True, "conversation_id": "42"}

    messages = _wait_for_messages(client, "42", 1)
    assert messages[0]["text"] == "Hello from the relay."
    assert client.service.calls[0]["messages"][0]["content"] == [{"type": "text", "text": "say hello"}]


def test_slash_command_over_http(client):
    client.post("/api/messages", json={"conversation_id": "7", "text": "/ping"})
    assert _wait_for_messages(client, "7", 1)[0]["text"] == "🏓 Pong!"
    assert client.service.calls == []


def test_media_is_decoded(client):
    png = b"\x89PNG\r\n\x1a\n0000"
    client.post("/api/messages", json={
        "conversation_id": "9", "text": "what is this?",
        "media_base64": base64.b64encode(png).decode(), "mime_type": "image/png",
    })
    _wait_for_messages(client, "9", 1)
    blocks = client.service.calls[0]["messages"][0]["content"]
    assert blocks[1]["type"] == "image"
    assert base64.b64decode(blocks[1]["source"]["data"]) == png


@pytest.mark.parametrize("body, error", [
    ({"text": "no id"}, "conversation_id required"),
    ({"conversation_id": "1", "text": 5}, "text must be a string"),
    ({"conversation_id": "1", "media_base64": "***"}, "media_base64 is not valid base64"),
])
def test_bad_requests(client, body, error):
    response = client.post("/api/messages", json=body)
    assert response.status_code == 400
    assert response.json()["error"] == error


def test_invalid_json(client):
    response = client.post("/api/messages", content=b"{not json", headers={"content-type": "application/json"})
    assert response.status_code == 400


def test_queue_and_health(client, store):
    store.queue.add("3", "retry me", media=b"abc", mime_type="text/plain")

    items = client.get("/api/queue").json()["items"]
    assert items[0]["user_message"] == "retry me"
    assert items[0]["has_media"] is True
    assert "media" not in items[0]

    health = client.get("/api/health").json()
    assert health["ok"] is True
    assert health["queue_pending"] is True
    assert health["worker_running"] is False
