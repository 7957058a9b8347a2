from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace

import pytest

from conductor_mcp import server as server_module
from conductor_mcp.config import ConductorSettings
from conductor_mcp.vcs import InMemoryBackend


class StubFastMCP:
    def __init__(self, *args, **kwargs):
        self.options = kwargs
        self.tools: dict[str, object] = {}
        self.resources: dict[str, object] = {}

    def tool(self, *args, **kwargs):
        def decorator(fn):
            self.tools[kwargs.get("name", fn.__name__)] = fn
            return fn

        return decorator

    def resource(self, uri, **kwargs):
        def decorator(fn):
            self.resources[uri] = fn
            return fn

        return decorator


@pytest.fixture(autouse=True)
def stub_fastmcp(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(server_module, "FastMCP", StubFastMCP)


DEFINITION = {
    "id": "T1",
    "title": "Track one",
    "phases": [{"id": "P1", "title": "Phase 1", "tasks": [{"id": "A", "title": "A"}]}],
}


def test_status_reports_tracks_and_reverts(tmp_path: Path) -> None:
    settings = ConductorSettings(CONDUCTOR_DIR=tmp_path / "conductor", CONDUCTOR_REPO_PATH=tmp_path)
    backend = InMemoryBackend([("base", ["README.md"])])
    server = server_module.create_server(settings, backend=backend)

    service = server.service
    service.start_track(DEFINITION)
    backend.commit("c1", ["a.py"])
    service.record_task_commit("A", "c1")
    service.execute_revert(service.plan_revert("A"))

    status = server.build_status("req-1")

    assert status["request_id"] == "req-1"
    assert status["backend"]["available"] is True
    assert status["backend"]["kind"] == "InMemoryBackend"
    assert status["tracks"]["count"] == 1
    assert status["tracks"]["active_track"] == "T1"
    assert status["tracks"]["status_counts"] == {"pending": 1}
    assert status["reverts"]["count"] == 1
    assert status["reverts"]["recent"][0]["status"] == "completed"
    assert "plan_revert" in server.tools


def test_status_resource_returns_json(tmp_path: Path) -> None:
    settings = ConductorSettings(CONDUCTOR_DIR=tmp_path / "conductor")
    server = server_module.create_server(settings, backend=InMemoryBackend())

    resource = server.resources["resource://conductor/status"]
    payload = json.loads(resource(SimpleNamespace(request_id="abc")))

    assert payload["request_id"] == "abc"
    assert payload["tracks"]["items"] == []


def test_missing_git_degrades_to_unavailable_backend(tmp_path: Path) -> None:
    settings = ConductorSettings(
        CONDUCTOR_DIR=tmp_path / "conductor",
        CONDUCTOR_GIT_PATH=str(tmp_path / "missing-git"),
    )
    server = server_module.create_server(settings)

    assert server.backend is None
    assert server.backend_metadata["available"] is False
    assert "missing-git" in server.backend_metadata["error"]

    server.service.start_track(DEFINITION)
    result = server.tool_handles.plan_revert("A")
    assert result["ok"] is False
    assert result["error"]["type"] == "BackendUnavailable"


def test_status_counts_every_revert_but_lists_recent(tmp_path: Path) -> None:
    settings = ConductorSettings(CONDUCTOR_DIR=tmp_path / "conductor")
    backend = InMemoryBackend([("base", ["README.md"])])
    server = server_module.create_server(settings, backend=backend)
    server.service.start_track(DEFINITION)

    for _ in range(7):
        server.service.execute_revert(server.service.plan_revert("A"))

    status = server.build_status()
    assert status["reverts"]["count"] == 7
    assert len(status["reverts"]["recent"]) == 5
