from __future__ import annotations

import threading
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from agent_browser_tool import server
from agent_browser_tool.config import ToolConfig
from agent_browser_tool.errors import (
    EngineUnavailableError,
    FetchError,
    InvalidRequestError,
    RefNotFoundError,
)


class StubTool:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.threads: set[str] = set()
        self.closed = False

    def execute(self, call_id: str, params: dict) -> dict:
        self.calls.append((call_id, params))
        self.threads.add(threading.current_thread().name)
        action = params.get("action")
        if action == "status":
            return {"ok": True, "liveAvailable": False, "liveRunning": False, "tabCount": 2}
        errors = {
            "bad": InvalidRequestError("unsupported browser action: bad"),
            "stale": RefNotFoundError("ref not found: e9"),
            "live": EngineUnavailableError("live engine unavailable and fallback is disabled."),
            "down": FetchError("request to https://x/ failed"),
        }
        if action in errors:
            raise errors[action]
        return {"ok": True, "action": action}

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def stub(monkeypatch: pytest.MonkeyPatch) -> Iterator[StubTool]:
    tool = StubTool()
    state = server.ToolState(factory=lambda _config: tool, config=ToolConfig())
    monkeypatch.setattr(server, "state", state)
    yield tool
    state.shutdown()


def test_health_reports_status(stub: StubTool) -> None:
    client = TestClient(server.app)

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "liveAvailable": False, "liveRunning": False, "tabCount": 2}


def test_execute_runs_on_single_worker(stub: StubTool) -> None:
    client = TestClient(server.app)

    first = client.post("/execute", params={"call_id": "call-1"}, json={"action": "open"})
    second = client.post("/execute", json={"action": "snapshot"})

    assert first.json() == {"ok": True, "action": "open"}
    assert second.status_code == 200
    assert stub.calls[0] == ("call-1", {"action": "open"})
    assert stub.calls[1][0].startswith("http-")
    assert len(stub.threads) == 1
    assert next(iter(stub.threads)).startswith("browser-tool")


@pytest.mark.parametrize(
    ("action", "status_code"),
    [("bad", 400), ("stale", 404), ("live", 409), ("down", 502)],
)
def test_errors_map_to_status_codes(stub: StubTool, action: str, status_code: int) -> None:
    client = TestClient(server.app)

    response = client.post("/execute", json={"action": action})

    assert response.status_code == status_code
    assert response.json()["detail"]


def test_shutdown_closes_tool() -> None:
    tool = StubTool()
    state = server.ToolState(factory=lambda _config: tool, config=ToolConfig())

    state.execute("c1", {"action": "status"})
    state.shutdown()

    assert tool.closed is True
