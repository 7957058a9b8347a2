from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from conductor_mcp.config import ConductorSettings
from conductor_mcp.service import ConductorService
from conductor_mcp.tools import register_tools
from conductor_mcp.vcs import InMemoryBackend

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)

DEFINITION = {
    "id": "T1",
    "title": "Track one",
    "phases": [
        {"id": "P1", "title": "Phase 1", "tasks": [{"id": "A", "title": "A"}, {"id": "B", "title": "B"}]},
    ],
}


class StubTool:
    def __init__(self, fn, name):
        self.fn = fn
        self.name = name


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name)
            self._tools[tool_name] = tool
            return tool

        return decorator


def _register(tmp_path: Path, backend: InMemoryBackend | None = None, **settings):
    backend = backend or InMemoryBackend([("base", ["README.md"])])
    config = ConductorSettings(CONDUCTOR_DIR=tmp_path / "conductor", **settings)
    service = ConductorService.from_directory(
        tmp_path / "conductor",
        backend,
        allow_forced_revert=config.allow_forced_revert,
        clock=lambda: NOW,
    )
    server = StubServer()
    handles = register_tools(server, service=service, settings=config)
    return server, handles, backend


def test_register_tools_exposes_command_surface(tmp_path: Path) -> None:
    server, _, _ = _register(tmp_path)

    assert set(server._tools) == {
        "start_track",
        "activate_track",
        "list_tracks",
        "get_status",
        "set_task_status",
        "record_task_commit",
        "record_verification",
        "plan_revert",
        "execute_revert",
        "revert_history",
    }


def test_track_lifecycle_through_tools(tmp_path: Path) -> None:
    _, handles, backend = _register(tmp_path)

    started = handles.start_track.fn(DEFINITION)
    assert started["ok"] is True
    assert started["track"]["status"] == "pending"

    handles.set_task_status.fn("A", "in_progress")
    backend.commit("c1", ["a.py"])
    recorded = handles.record_task_commit.fn("A", "c1")
    assert recorded["entry"]["unit_id"] == "T1/P1/A"
    assert recorded["entry"]["sequence"] == 1
    handles.set_task_status.fn("A", "done")

    status = handles.get_status.fn()
    task = status["track"]["phases"][0]["tasks"][0]
    assert task["status"] == "done"
    assert task["commits"] == ["c1"]
    assert status["track"]["phases"][0]["status"] == "in_progress"

    planned = handles.plan_revert.fn("A")
    assert planned["ok"] is True
    assert planned["plan"]["commits"] == ["c1"]

    executed = handles.execute_revert.fn(planned["plan"])
    assert executed["ok"] is True
    assert executed["result"]["status"] == "completed"
    assert backend.reverted == ["c1"]

    history = handles.revert_history.fn("T1")
    assert [event["commit_id"] for event in history["events"]] == ["c1"]
    after = handles.get_status.fn("T1")
    assert after["track"]["phases"][0]["tasks"][0]["commits"] == []


def test_list_and_activate_tracks(tmp_path: Path) -> None:
    _, handles, _ = _register(tmp_path)
    handles.start_track.fn(DEFINITION)
    handles.start_track.fn({**DEFINITION, "id": "T2"}, activate=False)

    listing = handles.list_tracks.fn()
    assert listing["active_track"] == "T1"
    assert [item["id"] for item in listing["tracks"]] == ["T1", "T2"]

    activated = handles.activate_track.fn("T2")
    assert activated == {"ok": True, "active_track": "T2"}


def test_start_track_from_yaml_path(tmp_path: Path) -> None:
    _, handles, _ = _register(tmp_path)
    plan_file = tmp_path / "plan.yaml"
    plan_file.write_text(
        "title: Dark mode\n"
        "phases:\n"
        "  - id: ui\n"
        "    title: UI\n"
        "    tasks:\n"
        "      - id: toggle\n"
        "        title: Add toggle\n",
        encoding="utf-8",
    )

    started = handles.start_track.fn(definition_path=str(plan_file))

    assert started["ok"] is True
    assert started["track"]["id"] == "dark_mode_20250101"


def test_errors_are_returned_as_payloads(tmp_path: Path) -> None:
    _, handles, backend = _register(tmp_path)
    handles.start_track.fn(DEFINITION)

    missing = handles.set_task_status.fn("nope", "done")
    assert missing["ok"] is False
    assert missing["error"]["type"] == "NotFound"

    illegal = handles.set_task_status.fn("A", "done")
    assert illegal["error"]["type"] == "IllegalTransition"
    assert illegal["error"]["current"] == "pending"

    backend.commit("c1", ["a.py"])
    handles.record_task_commit.fn("A", "c1")
    duplicate = handles.record_task_commit.fn("B", "c1")
    assert duplicate["error"]["type"] == "DuplicateCommit"
    assert duplicate["error"]["existing_unit"] == "T1/P1/A"


def test_plan_revert_reports_dependent_work(tmp_path: Path) -> None:
    _, handles, backend = _register(tmp_path, CONDUCTOR_ALLOW_FORCED_REVERT=False)
    handles.start_track.fn(DEFINITION)
    backend.commit("c1", ["shared.py"])
    handles.record_task_commit.fn("A", "c1")
    backend.commit("c2", ["shared.py"])
    handles.record_task_commit.fn("B", "c2")

    blocked = handles.plan_revert.fn("A")
    assert blocked["ok"] is False
    assert blocked["error"]["type"] == "DependentWorkExists"
    assert blocked["error"]["conflicting_units"] == ["T1/P1/B"]

    forced = handles.plan_revert.fn("A", force=True)
    assert forced["ok"] is False
    assert forced["error"]["type"] == "DependentWorkExists"


def test_execute_revert_reports_partial_revert(tmp_path: Path) -> None:
    _, handles, backend = _register(tmp_path)
    handles.start_track.fn(DEFINITION)
    for commit_id in ("c1", "c2"):
        backend.commit(commit_id, ["a.py"])
        handles.record_task_commit.fn("A", commit_id)
    plan = handles.plan_revert.fn("A")["plan"]
    backend.script_conflict("c1", ["a.py"])

    result = handles.execute_revert.fn(plan)

    assert result["ok"] is False
    assert result["error"]["type"] == "PartialRevert"
    assert result["error"]["failed_step"] == 2
    assert result["error"]["conflict_files"] == ["a.py"]


def test_execute_revert_rejects_malformed_plan(tmp_path: Path) -> None:
    _, handles, _ = _register(tmp_path)
    handles.start_track.fn(DEFINITION)

    result = handles.execute_revert.fn({"plan_id": "x", "target": "T1/P1/A"})

    assert result["ok"] is False
    assert result["error"]["type"] == "InvalidPlan"
