"""
Tests: HTTP and WebSocket surface, driven through FastAPI's TestClient.

Run with:
    pytest jd_coach/tests/test_api.py -v
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from jd_coach.api import create_app
from jd_coach.api import websocket as ws_module
from jd_coach.api.websocket import SessionBroadcaster
from jd_coach.config import Settings
from jd_coach.models.enums import EventName
from jd_coach.orchestration.copilot import CopilotService
from jd_coach.persistence.state_repository import FileStateRepository

JD = """Backend Engineer

- Must have strong SQL skills with PostgreSQL
- Build REST APIs in Python
- Kubernetes experience is a plus
"""


@pytest.fixture
def client(tmp_path):
    copilot = CopilotService(repository=FileStateRepository(tmp_path / "data"), max_jd_chars=2_000)
    with TestClient(create_app(Settings(), copilot)) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["requirements"] == 0
    assert body["planActive"] is False


def test_set_job_description(client):
    response = client.post("/api/jd", json={"text": JD})
    assert response.status_code == 200
    body = response.json()
    assert body["origin"] == "heuristic"
    assert len(body["requirements"]) == 3
    assert body["requirements"][0]["mustHave"] is True
    assert body["groupCount"] == 0
    assert client.get("/health").json()["requirements"] == 3


@pytest.mark.parametrize("text,status", [("   ", 422), ("x" * 2_001, 413)])
def test_set_job_description_rejects(client, text, status):
    assert client.post("/api/jd", json={"text": text}).status_code == status


def test_fragment_state_and_reports(client):
    client.post("/api/jd", json={"text": JD})

    response = client.post(
        "/api/sessions/interview-1/fragments",
        json={"text": "I tuned PostgreSQL and wrote SQL daily", "source": "speaker"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["sessionId"] == "interview-1"
    assert "REQ-001" in body["touchedRequirementIds"]

    state = client.get("/api/sessions/interview-1/state").json()
    assert state["revision"] == 1
    assert state["reasoning"] is None
    req = next(r for r in state["requirements"] if r["id"] == "REQ-001")
    assert req["confidence"] > 0

    report = client.get("/api/sessions/interview-1/report").json()
    assert report["sessionId"] == "interview-1"
    assert len(report["groups"]) == 3

    text = client.get("/api/sessions/interview-1/report.txt")
    assert text.headers["content-type"].startswith("text/plain")
    assert text.text.startswith("Session: interview-1")

    flushed = client.post("/api/sessions/interview-1/flush").json()
    assert flushed["flushed"] is True
    assert flushed["overallFit"] == report["overallFit"]


def test_invalid_session_id(client):
    assert client.get("/api/sessions/@@@/state").status_code == 400
    assert client.post("/api/sessions/@@@/fragments", json={"text": "SQL"}).status_code == 400


def test_websocket_replays_latest_events(client):
    client.post("/api/jd", json={"text": JD})
    client.post("/api/sessions/s1/fragments", json={"text": "I wrote SQL against PostgreSQL"})

    with client.websocket_connect("/api/sessions/ws/s1") as ws:
        first = ws.receive_json()
        second = ws.receive_json()

    assert first["event"] == "jd-updated"
    assert len(first["payload"]["requirements"]) == 3
    assert second["event"] == "state-changed"
    assert second["payload"]["sessionId"] == "s1"


class FakeSocket:
    def __init__(self):
        self.sent = []

    async def accept(self):
        pass

    async def send_json(self, message):
        self.sent.append(message)


def test_last_disconnect_forgets_session_history():
    broadcaster = SessionBroadcaster()
    broadcaster(EventName.STATE_CHANGED, {"sessionId": "s1", "revision": 1})
    broadcaster(EventName.GUIDANCE, {"sessionId": "s1", "question": "Which clusters have you run?"})
    first, second = FakeSocket(), FakeSocket()

    asyncio.run(broadcaster.connect("s1", first))
    asyncio.run(broadcaster.connect("s1", second))
    assert [m["event"] for m in first.sent] == ["state-changed", "guidance"]

    broadcaster.disconnect("s1", first)
    assert len(broadcaster.history("s1")) == 2
    broadcaster.disconnect("s1", second)
    assert broadcaster.history("s1") == []


def test_idle_sessions_beyond_cap_lose_history(monkeypatch):
    monkeypatch.setattr(ws_module, "MAX_REPLAY_SESSIONS", 2)
    broadcaster = SessionBroadcaster()
    watcher = FakeSocket()
    asyncio.run(broadcaster.connect("s1", watcher))

    for sid in ("s1", "s2", "s3", "s4"):
        broadcaster(EventName.STATE_CHANGED, {"sessionId": sid, "revision": 1})

    assert broadcaster.history("s2") == []
    assert len(broadcaster.history("s1")) == 1
    assert len(broadcaster.history("s3")) == 1
    assert len(broadcaster.history("s4")) == 1
