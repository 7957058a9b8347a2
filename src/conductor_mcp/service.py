"""Command surface consumed by the implementing agent."""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from .errors import (
    BackendUnavailableError,
    ConductorError,
    IllegalTransitionError,
    InvalidPlanError,
    NotFoundError,
)
from .ledger import CommitLedger, LedgerEntry
from .plans import (
    PlanStore,
    Track,
    TrackDefinition,
    UnitRef,
    build_track,
    load_plan_definition,
    parse_plan_definition,
)
from .plans.models import TaskStatus, UnitKind
from .plans.status import record_verification, transition
from .revert import RevertExecutor, RevertPlan, RevertPlanner, RevertResult
from .vcs import VersionControl

logger = logging.getLogger(__name__)

REVERT_RESULTS_LIMIT = 50


class ConductorService:
    """Glue between the plan store, commit ledger and revert engine.

    Unit references may be canonical keys (``track/phase/task``) or shorter
    suffixes (``phase/task``, ``task``) that resolve uniquely, preferring the
    active track.
    """

    def __init__(
        self,
        store: PlanStore,
        ledger: CommitLedger,
        backend: VersionControl | None,
        *,
        allow_forced_revert: bool = True,
        backend_error: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.backend = backend
        self.backend_error = backend_error
        self._allow_forced_revert = allow_forced_revert
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.revert_results: deque[dict[str, Any]] = deque(maxlen=REVERT_RESULTS_LIMIT)
        self.revert_count = 0

    @classmethod
    def from_directory(
        cls,
        root: Path,
        backend: VersionControl | None,
        **kwargs: Any,
    ) -> "ConductorService":
        store = PlanStore(root)
        return cls(store, CommitLedger(store, clock=kwargs.get("clock")), backend, **kwargs)

    def resolve(self, reference: str, *, kind: UnitKind | None = None) -> UnitRef:
        """Resolve a possibly abbreviated unit reference to its canonical form."""

        reference = reference.strip().strip("/")
        label = kind or "unit"
        if not reference:
            raise NotFoundError(label, reference)

        active = self.store.active_track()
        summaries = self.store.list_tracks()
        ordered = sorted(summaries, key=lambda summary: summary.id != active)

        in_active: list[UnitRef] = []
        everywhere: list[UnitRef] = []
        for summary in ordered:
            track = self.store.load(summary.id)
            for ref in track.unit_refs():
                if kind is not None and ref.kind != kind:
                    continue
                if ref.key == reference or ref.key.endswith("/" + reference):
                    everywhere.append(ref)
                    if summary.id == active:
                        in_active.append(ref)

        exact = [ref for ref in everywhere if ref.key == reference]
        if len(exact) == 1:
            return exact[0]
        if len(in_active) == 1:
            return in_active[0]
        if len(everywhere) == 1:
            return everywhere[0]
        raise NotFoundError(label, reference, candidates=[ref.key for ref in everywhere])

    def _require_backend(self) -> VersionControl:
        if self.backend is None:
            raise BackendUnavailableError(
                self.backend_error or "Version-control backend is not configured"
            )
        return self.backend

    def start_track(
        self,
        definition: TrackDefinition | dict[str, Any] | None = None,
        *,
        definition_path: Path | None = None,
        activate: bool = True,
    ) -> Track:
        """Write the finalized plan for a new track."""

        if definition_path is not None:
            parsed = load_plan_definition(definition_path)
        elif isinstance(definition, TrackDefinition):
            parsed = definition
        else:
            parsed = parse_plan_definition(definition)

        track = self.store.create(build_track(parsed, now=self._clock()))
        if activate:
            self.store.set_active(track.id)
        logger.info(
            "Started track",
            extra={"track_id": track.id, "phases": len(track.phases), "active": activate},
        )
        return track

    def activate_track(self, track_id: str) -> str:
        ref = self.resolve(track_id, kind="track")
        self.store.set_active(ref.track_id)
        return ref.track_id

    def list_tracks(self) -> dict[str, Any]:
        index = self.store.load_index()
        return {
            "active_track": index.active_track,
            "tracks": [summary.model_dump(mode="json") for summary in index.tracks],
        }

    def get_status(self, track_id: str | None = None) -> Track:
        if track_id is None:
            track_id = self.store.active_track()
            if track_id is None:
                raise NotFoundError("track", "<active>")
        ref = self.resolve(track_id, kind="track")
        return self.ledger.attach_commits(self.store.load(ref.track_id))

    def set_task_status(self, task_id: str, status: TaskStatus) -> Track:
        ref = self.resolve(task_id, kind="task")
        track = self.store.load(ref.track_id)
        updated = transition(track, ref.phase_id or "", ref.task_id or "", status, now=self._clock())
        saved = self.store.save(updated)
        logger.info("Task status changed", extra={"unit_id": ref.key, "status": status})
        return self.ledger.attach_commits(saved)

    def record_task_commit(self, task_id: str, commit_id: str) -> LedgerEntry:
        ref = self.resolve(task_id, kind="task")
        track = self.store.load(ref.track_id)
        phase = track.find_phase(ref.phase_id or "")
        task = phase.find_task(ref.task_id or "") if phase else None
        if phase is None or task is None:
            raise NotFoundError("task", ref.key)
        if track.reverted_at is not None or phase.reverted_at is not None:
            raise IllegalTransitionError(
                ref.key, task.status, "commit", reason="its phase or track has been reverted"
            )
        return self.ledger.record(ref.key, commit_id)

    def record_verification(self, phase_id: str) -> Track:
        ref = self.resolve(phase_id, kind="phase")
        track = self.store.load(ref.track_id)
        saved = self.store.save(record_verification(track, ref.phase_id or "", now=self._clock()))
        logger.info("Phase verified", extra={"unit_id": ref.key})
        return self.ledger.attach_commits(saved)

    def plan_revert(self, unit_id: str, *, force: bool = False) -> RevertPlan:
        backend = self._require_backend()
        ref = self.resolve(unit_id)
        planner = RevertPlanner(
            self.store,
            self.ledger,
            backend,
            allow_forced=self._allow_forced_revert,
            clock=self._clock,
        )
        return planner.plan(ref, force=force)

    def execute_revert(
        self,
        plan: RevertPlan | dict[str, Any],
        *,
        mark_reverted: bool = False,
        should_continue: Callable[[], bool] | None = None,
    ) -> RevertResult:
        backend = self._require_backend()
        if not isinstance(plan, RevertPlan):
            try:
                plan = RevertPlan.model_validate(plan)
            except ValidationError as exc:
                raise InvalidPlanError(f"Revert plan is malformed: {exc}") from exc
        executor = RevertExecutor(self.store, self.ledger, backend, clock=self._clock)
        try:
            result = executor.execute(
                plan, should_continue=should_continue, mark_reverted=mark_reverted
            )
        except ConductorError as exc:
            self.revert_count += 1
            self.revert_results.append(
                {"plan_id": plan.plan_id, "target": plan.target, "error": exc.to_dict()}
            )
            raise
        self.revert_count += 1
        self.revert_results.append(result.model_dump(mode="json"))
        return result

    def revert_history(self, track_id: str) -> list[LedgerEntry]:
        ref = self.resolve(track_id, kind="track")
        return [entry for entry in self.ledger.history(ref.track_id) if entry.kind == "revert"]


__all__ = ["ConductorService"]
