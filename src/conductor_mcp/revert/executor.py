"""Apply a revert plan against the backend, then roll statuses back."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from ..errors import (
    BackendUnavailableError,
    IllegalTransitionError,
    InvalidPlanError,
    NotFoundError,
    PartialRevertError,
    StalePlanError,
)
from ..ledger import CommitLedger
from ..plans import PlanStore, UnitRef
from ..plans.status import reset_units
from ..vcs import VersionControl
from .models import RevertedCommit, RevertPlan, RevertResult

logger = logging.getLogger(__name__)


def _parse_key(key: str, plan_id: str) -> UnitRef:
    try:
        return UnitRef.parse(key)
    except ValueError as exc:
        raise InvalidPlanError(f"Plan {plan_id} names a malformed unit: {exc}", unit_id=key) from exc


class RevertExecutor:
    """Undo a plan's commits one at a time, newest first."""

    def __init__(
        self,
        store: PlanStore,
        ledger: CommitLedger,
        backend: VersionControl,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._backend = backend
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _validate(self, plan: RevertPlan, mark_reverted: bool) -> UnitRef:
        target = _parse_key(plan.target, plan.plan_id)
        if mark_reverted and target.kind == "task":
            raise IllegalTransitionError(
                plan.target, "pending", "reverted", reason="only phases and tracks can be marked reverted"
            )
        for commit_id in plan.commits:
            owner = self._ledger.owner_of(commit_id)
            if owner is None or not target.contains(UnitRef.parse(owner)):
                raise NotFoundError("commit", commit_id)
        for key in plan.reset_units:
            if not target.contains(_parse_key(key, plan.plan_id)):
                raise InvalidPlanError(
                    f"Plan {plan.plan_id} resets {key}, which is outside {plan.target}",
                    unit_id=key,
                )
        head = self._backend.current_head()
        if head != plan.head:
            raise StalePlanError(plan.plan_id, plan.head, head)
        return target

    def execute(
        self,
        plan: RevertPlan,
        *,
        should_continue: Callable[[], bool] | None = None,
        mark_reverted: bool = False,
    ) -> RevertResult:
        """Run every step of ``plan`` sequentially.

        Cancellation is honoured only between steps. Each undone commit gets
        its compensating ledger marker as soon as the backend confirms it, so
        the ledger matches history even when execution stops early. Plan
        statuses change only after every step succeeded.
        """

        target = self._validate(plan, mark_reverted)
        total = len(plan.commits)
        completed: list[RevertedCommit] = []

        if plan.forced and plan.conflicts:
            logger.warning(
                "Executing forced revert over dependent work",
                extra={"plan_id": plan.plan_id, "conflicting_units": plan.conflicting_units},
            )

        for index, commit_id in enumerate(plan.commits):
            if should_continue is not None and not should_continue():
                logger.info(
                    "Revert cancelled between steps",
                    extra={"plan_id": plan.plan_id, "completed_steps": index, "total_steps": total},
                )
                return RevertResult(
                    plan_id=plan.plan_id,
                    target=plan.target,
                    status="cancelled",
                    total_steps=total,
                    completed_steps=index,
                    reverted=completed,
                    finished_at=self._clock(),
                )

            try:
                outcome = self._backend.revert_commit(commit_id)
            except BackendUnavailableError as exc:
                if index == 0:
                    raise
                raise PartialRevertError(
                    plan_id=plan.plan_id,
                    completed_steps=index,
                    total_steps=total,
                    commit_id=commit_id,
                    reason=str(exc),
                ) from exc

            if not outcome.ok:
                logger.warning(
                    "Revert halted on conflict",
                    extra={
                        "plan_id": plan.plan_id,
                        "failed_step": index + 1,
                        "commit_id": commit_id,
                        "conflict_files": outcome.conflict_files,
                    },
                )
                raise PartialRevertError(
                    plan_id=plan.plan_id,
                    completed_steps=index,
                    total_steps=total,
                    commit_id=commit_id,
                    reason=outcome.message or "conflict requires manual resolution",
                    conflict_files=outcome.conflict_files,
                )

            self._ledger.mark_reverted(
                commit_id, revert_commit=outcome.revert_commit, plan_id=plan.plan_id
            )
            completed.append(RevertedCommit(commit_id=commit_id, revert_commit=outcome.revert_commit))

        track = self._store.load(target.track_id)
        track = reset_units(
            track,
            plan.reset_units,
            mark_reverted=[plan.target] if mark_reverted else [],
            now=self._clock(),
        )
        saved = self._store.save(track)

        logger.info(
            "Revert completed",
            extra={"plan_id": plan.plan_id, "target": plan.target, "steps": total},
        )
        return RevertResult(
            plan_id=plan.plan_id,
            target=plan.target,
            status="completed",
            total_steps=total,
            completed_steps=total,
            reverted=completed,
            reset_units=list(plan.reset_units),
            track_status=saved.status,
            finished_at=self._clock(),
        )


__all__ = ["RevertExecutor"]
