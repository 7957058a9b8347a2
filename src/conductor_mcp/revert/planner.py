"""Compute the exact, ordered set of commits to undo for a logical unit."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Mapping
from uuid import uuid4

from ..errors import ConflictingWork, DependentWorkExistsError, NotFoundError
from ..ledger import CommitLedger
from ..plans import PlanStore, Track, UnitRef
from ..vcs import CommitRecord, VersionControl, same_commit
from .models import ConflictSummary, RevertPlan

logger = logging.getLogger(__name__)


def _lookup(mapping: Mapping[str, str], full_id: str) -> str | None:
    if full_id in mapping:
        return mapping[full_id]
    for recorded, value in mapping.items():
        if same_commit(recorded, full_id):
            return value
    return None


def _in_history(history: list[CommitRecord], commit_id: str) -> bool:
    return any(same_commit(commit_id, record.id) for record in history)


def _position_of(history: list[CommitRecord], commit_id: str) -> int:
    matches = [index for index, record in enumerate(history) if same_commit(commit_id, record.id)]
    if len(matches) != 1:
        raise NotFoundError(
            "commit",
            commit_id,
            candidates=[history[index].id for index in matches] if matches else None,
        )
    return matches[0]


def ensure_unit(track: Track, ref: UnitRef) -> None:
    if ref.phase_id is None:
        return
    phase = track.find_phase(ref.phase_id)
    if phase is None:
        raise NotFoundError("phase", UnitRef(ref.track_id, ref.phase_id).key)
    if ref.task_id is not None and phase.find_task(ref.task_id) is None:
        raise NotFoundError("task", ref.key)


def reset_units_for(track: Track, target: UnitRef) -> list[str]:
    """Units whose status a revert of ``target`` rolls back, parents first.

    Explicitly skipped tasks stay skipped unless they are the target.
    """

    statuses = {
        UnitRef(track.id, phase.id, task.id): task.status for phase, task in track.iter_tasks()
    }
    units: list[str] = []
    for ref in track.unit_refs():
        if not target.contains(ref):
            continue
        if ref == target or ref.kind != "task":
            units.append(ref.key)
        elif statuses[ref] not in {"pending", "skipped"}:
            units.append(ref.key)
    return units


class RevertPlanner:
    """Read the plan store, ledger and backend history to build a revert plan."""

    def __init__(
        self,
        store: PlanStore,
        ledger: CommitLedger,
        backend: VersionControl,
        *,
        allow_forced: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._backend = backend
        self._allow_forced = allow_forced
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def plan(self, target: UnitRef, *, force: bool = False) -> RevertPlan:
        track = self._store.load(target.track_id)
        ensure_unit(track, target)

        if force and not self._allow_forced:
            logger.warning("Forced revert plans are disabled", extra={"target": target.key})
            force = False

        entries = self._ledger.active_entries(target.key)
        head = self._backend.current_head()
        commits: list[str] = []
        conflicts: list[ConflictingWork] = []

        if entries:
            earliest = min(entries, key=lambda entry: entry.sequence)
            history = self._backend.log(since=earliest.commit_id)
            if not all(_in_history(history, entry.commit_id) for entry in entries):
                # Recorded out of order; fall back to the full history.
                history = self._backend.log()
            positions = {entry.commit_id: _position_of(history, entry.commit_id) for entry in entries}

            # Order by real history so the undo is contiguous from the tip.
            commits = sorted(positions, key=positions.__getitem__, reverse=True)
            conflicts = self._find_conflicts(target, history, set(positions.values()))

        if conflicts and not force:
            error = DependentWorkExistsError(target.key, conflicts)
            logger.info(
                "Revert blocked by dependent work",
                extra={"target": target.key, "conflicting_units": error.conflicting_units},
            )
            raise error

        plan = RevertPlan(
            plan_id=uuid4().hex,
            target=target.key,
            target_kind=target.kind,
            head=head,
            commits=commits,
            reset_units=reset_units_for(track, target),
            conflicts=[ConflictSummary.from_work(conflict) for conflict in conflicts],
            forced=force,
            created_at=self._clock(),
        )
        logger.info(
            "Planned revert",
            extra={
                "target": plan.target,
                "plan_id": plan.plan_id,
                "steps": len(plan.commits),
                "forced": plan.forced,
            },
        )
        return plan

    def _find_conflicts(
        self,
        target: UnitRef,
        history: list[CommitRecord],
        own_positions: set[int],
    ) -> list[ConflictingWork]:
        """File-level overlap between the target's commits and later foreign work."""

        touched: set[str] = set()
        for position in own_positions:
            touched.update(history[position].changed_files)

        attribution = self._ledger.attribution()
        neutral = {commit_id: commit_id for commit_id in self._ledger.neutralized_commits()}
        first = min(own_positions)

        conflicts: list[ConflictingWork] = []
        for position in range(first + 1, len(history)):
            if position in own_positions:
                continue
            record = history[position]
            overlap = touched.intersection(record.changed_files)
            if not overlap or _lookup(neutral, record.id) is not None:
                continue
            owner = _lookup(attribution, record.id)
            if owner is not None and target.contains(UnitRef.parse(owner)):
                continue
            conflicts.append(ConflictingWork(commit_id=record.id, unit_id=owner, files=sorted(overlap)))
        return conflicts


__all__ = ["RevertPlanner", "ensure_unit", "reset_units_for"]
