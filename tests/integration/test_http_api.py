"""
Control API through FastAPI's TestClient: authentication, status, patches
and the websocket feed. Engines are fakes; the controller is real.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from streamdelay.runtime.controller import StreamController
from streamdelay.web.server import create_app

API_KEY = "correct-horse"
HEADERS = {"streamdelay-api-key": API_KEY}


@pytest.fixture
def client(stream_settings, engine_factory, scheduler):
    controller = StreamController(stream_settings, engine_factory, scheduler=scheduler)
    with TestClient(create_app(controller, API_KEY)) as client:
        yield client


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


def test_missing_api_key_is_400(client):
    response = client.get("/status")
    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "missing api key"}


@pytest.mark.parametrize("key", ["wrong", "correct-horse-battery"])
def test_invalid_api_key_is_403(client, key):
    response = client.get("/status", headers={"streamdelay-api-key": key})
    assert response.status_code == 403
    assert response.json() == {"ok": False, "error": "invalid api key"}


def test_api_key_in_query(client):
    assert client.get(f"/status?key={API_KEY}").status_code == 200


def test_websocket_requires_api_key(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws?key=wrong"):
            pass


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


def test_initial_status(client):
    response = client.get("/status", headers=HEADERS)
    assert response.status_code == 200
    assert response.json() == {
        "delaySeconds": 15,
        "restartSeconds": 3,
        "isCensored": False,
        "isStreamRunning": False,
        "startTime": None,
        "state": {"censorship": "normal", "stream": "stopped"},
        "error": None,
    }


def test_patch_censors_and_starts(client, engine_factory):
    response = client.patch("/status", headers=HEADERS, json={"isCensored": True, "isStreamRunning": True})
    assert response.status_code == 200
    body = response.json()
    assert body["isCensored"] is True
    assert body["isStreamRunning"] is True
    assert body["state"] == {
        "censorship": {"censored": "active"},
        "stream": {"running": "waiting"},
    }
    assert len(engine_factory.engines) == 1


def test_patch_stop_tears_down_engine(client, engine_factory):
    client.patch("/status", headers=HEADERS, json={"isStreamRunning": True})
    response = client.patch("/status", headers=HEADERS, json={"isStreamRunning": False})
    assert response.json()["state"]["stream"] == "stopped"
    assert engine_factory.latest.stop_calls == 1


def test_patch_uncensor_starts_release_window(client):
    client.patch("/status", headers=HEADERS, json={"isCensored": True})
    body = client.patch("/status", headers=HEADERS, json={"isCensored": False}).json()
    assert body["isCensored"] is True
    assert body["state"]["censorship"] == {"censored": "deactivating"}


def test_patch_rejects_invalid_body(client):
    response = client.patch("/status", headers=HEADERS, json={"isCensored": "maybe"})
    assert response.status_code == 422


def test_autostart_sends_start(stream_settings, engine_factory, scheduler):
    controller = StreamController(stream_settings, engine_factory, scheduler=scheduler)
    with TestClient(create_app(controller, API_KEY, autostart=True)) as client:
        body = client.patch("/status", headers=HEADERS, json={"isCensored": False}).json()
    assert body["isStreamRunning"] is True
    assert engine_factory.attempts == 1


# ---------------------------------------------------------------------------
# Websocket
# ---------------------------------------------------------------------------


def test_websocket_pushes_status_and_accepts_patches(client):
    with client.websocket_connect(f"/ws?key={API_KEY}") as ws:
        first = ws.receive_json()
        assert first["type"] == "status"
        assert first["status"]["isCensored"] is False

        ws.send_json({"isCensored": True})
        update = ws.receive_json()
        assert update["status"]["isCensored"] is True
        assert update["status"]["state"]["censorship"] == {"censored": "active"}

        # Malformed messages are ignored
        ws.send_text("not json")
        ws.send_json({"isStreamRunning": True})
        update = ws.receive_json()
        assert update["status"]["isStreamRunning"] is True


def test_websocket_receives_changes_from_http(client):
    with client.websocket_connect("/ws", headers=HEADERS) as ws:
        ws.receive_json()
        client.patch("/status", headers=HEADERS, json={"isStreamRunning": True})
        update = ws.receive_json()
        assert update["status"]["state"]["stream"] == {"running": "waiting"}


def test_websocket_accepts_binary_patches(client):
    with client.websocket_connect("/ws", headers=HEADERS) as ws:
        ws.receive_json()

        ws.send_bytes(b"\x80 not json")
        ws.send_bytes(b'{"isCensored": true}')
        update = ws.receive_json()
        assert update["status"]["isCensored"] is True
