from __future__ import annotations

import argparse
import importlib.util
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from conductor_mcp.service import ConductorService
from conductor_mcp.vcs import InMemoryBackend

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)

DEFINITION = {
    "id": "T1",
    "title": "Track one",
    "phases": [{"id": "P1", "title": "Phase 1", "tasks": [{"id": "A", "title": "A"}, {"id": "B", "title": "B"}]}],
}


def _load_diag(name: str):
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "conductor_diag.py"
    spec = importlib.util.spec_from_file_location(name, module_path)
    assert spec and spec.loader
    diag = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(diag)
    return diag


@pytest.fixture
def service(tmp_path: Path) -> ConductorService:
    backend = InMemoryBackend([("base", ["README.md"])])
    service = ConductorService.from_directory(tmp_path, backend, clock=lambda: NOW)
    service.start_track(DEFINITION)
    backend.commit("c1", ["shared.py"])
    service.record_task_commit("A", "c1")
    backend.commit("c2", ["shared.py"])
    service.record_task_commit("B", "c2")
    return service


def test_tracks_marks_active_track(monkeypatch, capsys, service) -> None:
    diag = _load_diag("conductor_diag_tracks")
    monkeypatch.setattr(diag, "load_service", lambda _settings, **_: service)

    diag.cmd_tracks(argparse.Namespace(json=False))

    assert capsys.readouterr().out.strip() == "* T1 [pending] Track one"


def test_ledger_dumps_entries(monkeypatch, capsys, service) -> None:
    diag = _load_diag("conductor_diag_ledger")
    monkeypatch.setattr(diag, "load_service", lambda _settings, **_: service)

    diag.cmd_ledger(argparse.Namespace(track_id="T1"))

    entries = json.loads(capsys.readouterr().out)
    assert [(entry["unit_id"], entry["commit_id"]) for entry in entries] == [
        ("T1/P1/A", "c1"),
        ("T1/P1/B", "c2"),
    ]


def test_status_prints_commits(monkeypatch, capsys, service) -> None:
    diag = _load_diag("conductor_diag_status")
    monkeypatch.setattr(diag, "load_service", lambda _settings, **_: service)

    diag.cmd_status(argparse.Namespace(track_id=None))

    payload = json.loads(capsys.readouterr().out)
    assert payload["phases"][0]["tasks"][1]["commits"] == ["c2"]


def test_plan_revert_failure_exits_nonzero(monkeypatch, capsys, service) -> None:
    diag = _load_diag("conductor_diag_plan")
    monkeypatch.setattr(diag, "load_service", lambda _settings, **_: service)

    with pytest.raises(SystemExit) as excinfo:
        diag.cmd_plan_revert(argparse.Namespace(unit_id="A", force=False))

    assert excinfo.value.code == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["type"] == "DependentWorkExists"
    assert payload["conflicting_units"] == ["T1/P1/B"]


def test_plan_revert_prints_plan(monkeypatch, capsys, service) -> None:
    diag = _load_diag("conductor_diag_plan_ok")
    monkeypatch.setattr(diag, "load_service", lambda _settings, **_: service)

    diag.cmd_plan_revert(argparse.Namespace(unit_id="B", force=False))

    payload = json.loads(capsys.readouterr().out)
    assert payload["commits"] == ["c2"]
    assert payload["reset_units"] == ["T1/P1/B"]


def test_missing_git_is_reported(monkeypatch, capsys, tmp_path: Path) -> None:
    diag = _load_diag("conductor_diag_backend")
    monkeypatch.setenv("CONDUCTOR_DIR", str(tmp_path))
    monkeypatch.setenv("CONDUCTOR_GIT_PATH", str(tmp_path / "missing-git"))

    with pytest.raises(SystemExit):
        diag.main(["plan-revert", "A"])

    assert "Backend unavailable" in capsys.readouterr().out
