from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from conductor_mcp.errors import (
    BackendUnavailableError,
    IllegalTransitionError,
    InvalidPlanError,
    PartialRevertError,
    StalePlanError,
)
from conductor_mcp.service import REVERT_RESULTS_LIMIT, ConductorService
from conductor_mcp.vcs import InMemoryBackend

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)

DEFINITION = {
    "id": "T1",
    "title": "Track one",
    "phases": [
        {
            "id": "P1",
            "title": "Phase 1",
            "verification": True,
            "tasks": [{"id": "A", "title": "A"}, {"id": "B", "title": "B"}],
        },
        {"id": "P2", "title": "Phase 2", "tasks": [{"id": "C", "title": "C"}]},
    ],
}


def _make_service(tmp_path: Path) -> tuple[ConductorService, InMemoryBackend]:
    backend = InMemoryBackend([("base", ["README.md"])])
    service = ConductorService.from_directory(tmp_path, backend, clock=lambda: NOW)
    service.start_track(DEFINITION)
    return service, backend


def _implement(service: ConductorService, backend: InMemoryBackend, task: str, *commits: str) -> None:
    service.set_task_status(task, "in_progress")
    for commit_id in commits:
        backend.commit(commit_id, [f"{task.lower()}.py"])
        service.record_task_commit(task, commit_id)
    service.set_task_status(task, "done")


def _task_status(service: ConductorService, phase_id: str, task_id: str) -> str:
    return service.get_status("T1").find_phase(phase_id).find_task(task_id).status


def test_simple_task_revert_executes_and_resets(tmp_path: Path) -> None:
    service, backend = _make_service(tmp_path)
    _implement(service, backend, "A", "c1", "c2")
    plan = service.plan_revert("A")

    result = service.execute_revert(plan)

    assert result.status == "completed"
    assert result.completed_steps == result.total_steps == 2
    assert [item.commit_id for item in result.reverted] == ["c2", "c1"]
    assert backend.reverted == ["c2", "c1"]
    assert _task_status(service, "P1", "A") == "pending"
    assert service.ledger.entries_for("T1/P1/A") == []
    assert [entry.commit_id for entry in service.revert_history("T1")] == ["c2", "c1"]
    assert service.ledger.history("T1")[0].commit_id == "c1"


def test_partial_revert_stops_at_failing_step(tmp_path: Path) -> None:
    service, backend = _make_service(tmp_path)
    _implement(service, backend, "A", "c1", "c2", "c3")
    plan = service.plan_revert("A")
    assert plan.commits == ["c3", "c2", "c1"]
    backend.script_conflict("c2", ["a.py"])

    with pytest.raises(PartialRevertError) as excinfo:
        service.execute_revert(plan)

    error = excinfo.value
    assert error.failed_step == 2
    assert error.completed_steps == 1
    assert error.commit_id == "c2"
    assert error.conflict_files == ["a.py"]
    assert backend.reverted == ["c3"]
    assert service.ledger.is_reverted("c3")
    assert not service.ledger.is_reverted("c2")
    assert not service.ledger.is_reverted("c1")
    assert _task_status(service, "P1", "A") == "done"
    assert service.revert_results[-1]["error"]["failed_step"] == 2


def test_replanning_after_partial_revert_resumes(tmp_path: Path) -> None:
    service, backend = _make_service(tmp_path)
    _implement(service, backend, "A", "c1", "c2", "c3")
    backend.script_conflict("c2")
    with pytest.raises(PartialRevertError):
        service.execute_revert(service.plan_revert("A"))

    resumed = service.plan_revert("A")
    result = service.execute_revert(resumed)

    assert resumed.commits == ["c2", "c1"]
    assert result.status == "completed"
    assert backend.reverted == ["c3", "c2", "c1"]
    assert _task_status(service, "P1", "A") == "pending"


def test_cancellation_is_honoured_between_steps(tmp_path: Path) -> None:
    service, backend = _make_service(tmp_path)
    _implement(service, backend, "A", "c1", "c2", "c3")
    plan = service.plan_revert("A")
    answers = iter([True, False])

    result = service.execute_revert(plan, should_continue=lambda: next(answers))

    assert result.status == "cancelled"
    assert result.completed_steps == 1
    assert result.total_steps == 3
    assert backend.reverted == ["c3"]
    assert service.ledger.entries_for("T1/P1/A") == ["c1", "c2"]
    assert _task_status(service, "P1", "A") == "done"


def test_cancel_before_start_has_no_side_effects(tmp_path: Path) -> None:
    service, backend = _make_service(tmp_path)
    _implement(service, backend, "A", "c1")
    plan = service.plan_revert("A")

    result = service.execute_revert(plan, should_continue=lambda: False)

    assert result.completed_steps == 0
    assert backend.reverted == []
    assert service.revert_history("T1") == []


def test_stale_plan_is_rejected(tmp_path: Path) -> None:
    service, backend = _make_service(tmp_path)
    _implement(service, backend, "A", "c1")
    plan = service.plan_revert("A")
    backend.commit("later", ["unrelated.py"])

    with pytest.raises(StalePlanError):
        service.execute_revert(plan)

    assert backend.reverted == []


def test_backend_failure_on_first_step_surfaces_directly(tmp_path: Path) -> None:
    service, backend = _make_service(tmp_path)
    _implement(service, backend, "A", "c1", "c2")
    backend.unavailable.add("c2")

    with pytest.raises(BackendUnavailableError):
        service.execute_revert(service.plan_revert("A"))


def test_backend_failure_mid_plan_is_partial(tmp_path: Path) -> None:
    service, backend = _make_service(tmp_path)
    _implement(service, backend, "A", "c1", "c2")
    backend.unavailable.add("c1")

    with pytest.raises(PartialRevertError) as excinfo:
        service.execute_revert(service.plan_revert("A"))

    assert excinfo.value.failed_step == 2
    assert backend.reverted == ["c2"]


def test_phase_revert_clears_verification_and_can_mark_reverted(tmp_path: Path) -> None:
    service, backend = _make_service(tmp_path)
    _implement(service, backend, "A", "c1")
    _implement(service, backend, "B", "c2")
    service.record_verification("P1")
    assert service.get_status("T1").find_phase("P1").status == "done"

    result = service.execute_revert(service.plan_revert("P1"), mark_reverted=True)

    track = service.get_status("T1")
    assert result.track_status == "pending"
    assert track.find_phase("P1").status == "reverted"
    assert track.find_phase("P1").verified_at is None
    with pytest.raises(IllegalTransitionError):
        service.set_task_status("A", "in_progress")
    with pytest.raises(IllegalTransitionError):
        service.record_task_commit("A", "c9")


def test_marking_a_task_reverted_is_illegal(tmp_path: Path) -> None:
    service, backend = _make_service(tmp_path)
    _implement(service, backend, "A", "c1")

    with pytest.raises(IllegalTransitionError):
        service.execute_revert(service.plan_revert("A"), mark_reverted=True)

    assert backend.reverted == []


def test_plan_survives_json_round_trip(tmp_path: Path) -> None:
    service, backend = _make_service(tmp_path)
    _implement(service, backend, "C", "c1")
    payload = service.plan_revert("C").model_dump(mode="json")

    result = service.execute_revert(payload)

    assert result.status == "completed"
    assert _task_status(service, "P2", "C") == "pending"


def _implement_pair(tmp_path: Path) -> tuple[ConductorService, InMemoryBackend]:
    service, backend = _make_service(tmp_path)
    _implement(service, backend, "A", "c1")
    _implement(service, backend, "B", "c2")
    return service, backend


def test_plan_cannot_reset_units_outside_its_target(tmp_path: Path) -> None:
    service, backend = _implement_pair(tmp_path)
    payload = service.plan_revert("A").model_dump(mode="json")
    payload["reset_units"].append("T1/P1/B")

    with pytest.raises(InvalidPlanError) as excinfo:
        service.execute_revert(payload)

    assert excinfo.value.unit_id == "T1/P1/B"
    assert backend.reverted == []
    assert _task_status(service, "P1", "B") == "done"


def test_plan_with_malformed_target_is_invalid(tmp_path: Path) -> None:
    service, backend = _implement_pair(tmp_path)
    payload = service.plan_revert("A").model_dump(mode="json")
    payload["target"] = "T1//A"

    with pytest.raises(InvalidPlanError):
        service.execute_revert(payload)

    assert backend.reverted == []


def test_incomplete_plan_payload_is_invalid(tmp_path: Path) -> None:
    service, _ = _make_service(tmp_path)

    with pytest.raises(InvalidPlanError):
        service.execute_revert({"plan_id": "x", "target": "T1/P1/A"})


def test_revert_results_keep_only_recent_runs(tmp_path: Path) -> None:
    service, _ = _make_service(tmp_path)

    for _ in range(REVERT_RESULTS_LIMIT + 5):
        service.execute_revert(service.plan_revert("C"))

    assert len(service.revert_results) == REVERT_RESULTS_LIMIT
    assert service.revert_count == REVERT_RESULTS_LIMIT + 5
