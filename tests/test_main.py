import pytest
from fastapi.testclient import TestClient

from fakes import Rig
from omnilive.commands import View
from omnilive.main import UIClient, UIHub, create_app


@pytest.fixture
def rig(tmp_path):
    return Rig(tmp_path)


@pytest.fixture
def client(rig):
    app = create_app(controller=rig.controller, desktop=rig.desktop)
    with TestClient(app) as c:
        yield c


def test_health_and_agents(client):
    assert client.get("/health").json() == {"ok": True, "live": False}
    agents = client.get("/live/agents").json()
    assert [a["id"] for a in agents] == ["default", "coder", "creative", "teacher"]
    assert client.get("/desktop").json()["view"] == "CHAT"


def test_activate_status_deactivate(client, rig):
    r = client.post("/live/activate", json={"agent_id": "coder"})
    assert r.status_code == 200
    body = r.json()
    assert body["state"] == "open"
    assert body["agent"]["id"] == "coder"
    assert body["session_id"]

    status = client.get("/live/status").json()
    assert status["state"] == "open"
    assert client.get("/health").json()["live"] is True

    assert client.post("/live/deactivate").json()["state"] == "closed"
    assert client.post("/live/deactivate").json()["state"] == "closed"
    assert len(rig.sockets) == 1


def test_unknown_agent_is_404(client, rig):
    r = client.post("/live/activate", json={"agent_id": "pirate"})
    assert r.status_code == 404
    assert rig.sockets == []


def test_device_failure_is_409(tmp_path):
    rig = Rig(tmp_path, mic_fail=True)
    with TestClient(create_app(controller=rig.controller, desktop=rig.desktop)) as client:
        r = client.post("/live/activate", json={"agent_id": "default"})
        assert r.status_code == 409
        assert client.get("/live/status").json()["state"] == "closed"


def test_transport_failure_is_502(tmp_path):
    rig = Rig(tmp_path, setup_reply={"error": {"code": 403}})
    with TestClient(create_app(controller=rig.controller, desktop=rig.desktop)) as client:
        assert client.post("/live/activate", json={"agent_id": "default"}).status_code == 502


def test_device_patch(client, rig):
    client.post("/live/activate", json={"agent_id": "default"})
    r = client.patch("/live/devices", json={"mic_muted": True, "input_gain": 1.5})
    assert r.status_code == 200
    assert r.json()["devices"] == {"mic_muted": True, "camera_muted": False, "screen_sharing": False, "input_gain": 1.5}
    assert r.json()["state"] == "open"

    assert client.patch("/live/devices", json={"input_gain": 9}).status_code == 422
    assert len(rig.sockets) == 1


def test_agent_switch_reconnects(client, rig):
    client.post("/live/activate", json={"agent_id": "default"})

    same = client.put("/live/agent", json={"agent_id": "default"}).json()
    assert same["reconnected"] is False

    other = client.put("/live/agent", json={"agent_id": "creative"}).json()
    assert other["reconnected"] is True
    assert other["agent"]["id"] == "creative"
    assert rig.sleeps == [0.5]
    assert len(rig.sockets) == 2


def test_ui_socket_receives_state_and_commands(client, rig):
    with client.websocket_connect("/ws/ui") as ws:
        hello = ws.receive_json()
        assert hello == {"type": "state", "state": "idle", "reason": "hello"}

        client.post("/live/activate", json={"agent_id": "default"})
        assert ws.receive_json()["state"] == "connecting"
        assert ws.receive_json()["state"] == "open"

        client.portal.call(
            rig.ws.push,
            {"toolCall": {"functionCalls": [{"id": "1", "name": "change_view", "args": {"view": "veo"}}]}},
        )
        cmd = ws.receive_json()
        assert cmd["type"] == "ui_command"
        assert cmd["command"] == "change_view"
        assert cmd["desktop"]["view"] == "VEO"
        assert rig.desktop.state.view == View.VEO


def test_metrics_view(client):
    body = client.get("/metrics").json()
    assert set(body) >= {"sessions", "connect_ms", "metrics", "tool_calls"}


class RecordingSocket:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send_text(self, payload: str):
        if self.fail:
            raise RuntimeError("client went away")
        self.sent.append(payload)


@pytest.mark.asyncio
async def test_hub_holds_pending_broadcasts_until_done():
    hub = UIHub()
    good, bad = UIClient(RecordingSocket()), UIClient(RecordingSocket(fail=True))
    hub.clients.update({good, bad})

    hub.post("one")
    hub.post("two")
    assert len(hub._pending) == 2

    await hub.drain()
    assert hub._pending == set()
    assert good.ws.sent == ["one", "two"]
    assert hub.clients == {good}


def test_hub_post_without_clients_is_noop():
    hub = UIHub()
    hub.post("nobody listening")
    assert hub._pending == set()
