"""Pure status state machine and rollup for track trees.

Phase and track statuses are never set by callers. They are derived from
children by :func:`recompute`, except for the terminal ``reverted`` status
which the revert executor forces through :func:`reset_units`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from ..errors import IllegalTransitionError, NotFoundError
from .models import Phase, Task, TaskStatus, Track, UnitRef, UnitStatus

# Forward-only transitions allowed during normal implementation.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"in_progress", "skipped"}),
    "in_progress": frozenset({"done", "skipped"}),
    "done": frozenset(),
    "skipped": frozenset(),
}

_FINISHED = frozenset({"done", "skipped"})
_STARTED = frozenset({"in_progress", "done"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def derive_phase_status(phase: Phase) -> UnitStatus:
    if phase.reverted_at is not None:
        return "reverted"
    statuses = [task.status for task in phase.tasks]
    verified = not phase.verification or phase.verified_at is not None
    if statuses and all(status in _FINISHED for status in statuses) and verified:
        return "done"
    if any(status in _STARTED for status in statuses):
        return "in_progress"
    return "pending"


def derive_track_status(track: Track) -> UnitStatus:
    if track.reverted_at is not None:
        return "reverted"
    # Reverted phases count like skipped tasks.
    live = [phase.status for phase in track.phases if phase.status != "reverted"]
    if live and all(status == "done" for status in live):
        return "done"
    if any(status in _STARTED for status in live):
        return "in_progress"
    return "pending"


def recompute(track: Track) -> Track:
    """Return a copy of ``track`` with phase and track statuses re-derived."""

    updated = track.model_copy(deep=True)
    for phase in updated.phases:
        phase.status = derive_phase_status(phase)
    updated.status = derive_track_status(updated)
    return updated


def _locate(track: Track, phase_id: str, task_id: str) -> tuple[Phase, Task]:
    phase = track.find_phase(phase_id)
    if phase is None:
        raise NotFoundError("phase", UnitRef(track.id, phase_id).key)
    task = phase.find_task(task_id)
    if task is None:
        raise NotFoundError("task", UnitRef(track.id, phase_id, task_id).key)
    return phase, task


def ensure_writable(track: Track, phase: Phase, task: Task, requested: str) -> None:
    """Reject progress on a task whose phase or track was reverted."""

    if requested not in _STARTED:
        return
    if track.reverted_at is not None or phase.reverted_at is not None:
        raise IllegalTransitionError(
            UnitRef(track.id, phase.id, task.id).key,
            task.status,
            requested,
            reason="its phase or track has been reverted",
        )


def transition(
    track: Track,
    phase_id: str,
    task_id: str,
    new_status: TaskStatus,
    *,
    now: datetime | None = None,
) -> Track:
    """Move one task forward and return the recomputed track."""

    updated = track.model_copy(deep=True)
    phase, task = _locate(updated, phase_id, task_id)
    key = UnitRef(updated.id, phase.id, task.id).key

    if new_status not in ALLOWED_TRANSITIONS:
        raise IllegalTransitionError(key, task.status, str(new_status), reason="unknown status")
    if task.status == new_status:
        return recompute(updated)
    ensure_writable(updated, phase, task, new_status)
    if new_status not in ALLOWED_TRANSITIONS[task.status]:
        raise IllegalTransitionError(
            key,
            task.status,
            new_status,
            reason="only pending -> in_progress -> done or -> skipped are allowed",
        )

    task.status = new_status
    task.updated_at = now or _utcnow()
    return recompute(updated)


def record_verification(track: Track, phase_id: str, *, now: datetime | None = None) -> Track:
    """Record manual verification for a phase whose tasks are all finished."""

    updated = track.model_copy(deep=True)
    phase = updated.find_phase(phase_id)
    if phase is None:
        raise NotFoundError("phase", UnitRef(updated.id, phase_id).key)
    key = UnitRef(updated.id, phase.id).key
    if phase.reverted_at is not None:
        raise IllegalTransitionError(key, "reverted", "verified", reason="phase has been reverted")
    if not phase.tasks or any(task.status not in _FINISHED for task in phase.tasks):
        raise IllegalTransitionError(
            key, phase.status, "verified", reason="all tasks must be done or skipped first"
        )
    phase.verified_at = now or _utcnow()
    return recompute(updated)


def reset_units(
    track: Track,
    keys: Iterable[str],
    *,
    mark_reverted: Iterable[str] = (),
    now: datetime | None = None,
) -> Track:
    """Roll units back after a revert.

    This is the only backward path in the state machine and is reserved for
    the revert executor. Listed tasks return to ``pending``; every phase that
    loses a task, or is itself listed, loses its verification stamp. Units in
    ``mark_reverted`` are forced to ``reverted``.
    """

    stamp = now or _utcnow()
    updated = track.model_copy(deep=True)

    for key in keys:
        ref = UnitRef.parse(key)
        if ref.track_id != updated.id:
            raise NotFoundError(ref.kind, key)
        if ref.phase_id is None:
            continue
        phase = updated.find_phase(ref.phase_id)
        if phase is None:
            raise NotFoundError("phase", key)
        phase.verified_at = None
        if ref.task_id is not None:
            task = phase.find_task(ref.task_id)
            if task is None:
                raise NotFoundError("task", key)
            if task.status != "pending":
                task.status = "pending"
                task.updated_at = stamp

    for key in mark_reverted:
        ref = UnitRef.parse(key)
        if ref.kind == "track" and ref.track_id == updated.id:
            updated.reverted_at = stamp
        elif ref.kind == "phase":
            phase = updated.find_phase(ref.phase_id or "")
            if phase is None or ref.track_id != updated.id:
                raise NotFoundError("phase", key)
            phase.reverted_at = stamp
        else:
            raise NotFoundError(ref.kind, key)

    return recompute(updated)


__all__ = [
    "ALLOWED_TRANSITIONS",
    "derive_phase_status",
    "derive_track_status",
    "ensure_writable",
    "record_verification",
    "recompute",
    "reset_units",
    "transition",
]
