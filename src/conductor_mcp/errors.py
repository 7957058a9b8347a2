"""Typed errors surfaced by the Conductor command surface."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Iterable


class ConductorError(RuntimeError):
    """Base class for structural and revert errors.

    Every subclass names the unit or commit it concerns so callers can form
    a narrower or corrective request.
    """

    code = "ConductorError"

    def details(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.code, "message": str(self), **self.details()}


class NotFoundError(ConductorError):
    """Raised for unknown tracks, phases, tasks or commits."""

    code = "NotFound"

    def __init__(self, kind: str, identifier: str, *, candidates: Iterable[str] | None = None) -> None:
        self.kind = kind
        self.identifier = identifier
        self.candidates = sorted(candidates or [])
        if self.candidates:
            message = (
                f"{kind} '{identifier}' is ambiguous; candidates: {', '.join(self.candidates)}"
            )
        else:
            message = f"{kind} '{identifier}' not found"
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind, "id": self.identifier}
        if self.candidates:
            payload["candidates"] = self.candidates
        return payload


class InvalidPlanError(ConductorError):
    """Raised when a plan definition or stored tree violates identifier rules."""

    code = "InvalidPlan"

    def __init__(self, message: str, *, unit_id: str | None = None) -> None:
        self.unit_id = unit_id
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {"unit_id": self.unit_id}


class IllegalTransitionError(ConductorError):
    """Raised when a status change violates the task state machine."""

    code = "IllegalTransition"

    def __init__(self, unit_id: str, current: str, requested: str, reason: str | None = None) -> None:
        self.unit_id = unit_id
        self.current = current
        self.requested = requested
        message = f"Cannot move '{unit_id}' from {current} to {requested}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {"unit_id": self.unit_id, "current": self.current, "requested": self.requested}


class DuplicateCommitError(ConductorError):
    """Raised when a commit is already attributed to another unit."""

    code = "DuplicateCommit"

    def __init__(self, commit_id: str, existing_unit: str, requested_unit: str) -> None:
        self.commit_id = commit_id
        self.existing_unit = existing_unit
        self.requested_unit = requested_unit
        super().__init__(
            f"Commit {commit_id} is already recorded for '{existing_unit}'; "
            f"cannot attribute it to '{requested_unit}'"
        )

    def details(self) -> dict[str, Any]:
        return {
            "commit_id": self.commit_id,
            "existing_unit": self.existing_unit,
            "requested_unit": self.requested_unit,
        }


@dataclass(slots=True)
class ConflictingWork:
    """A later commit outside the revert target that touches the same files."""

    commit_id: str
    unit_id: str | None
    files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DependentWorkExistsError(ConductorError):
    """Raised when reverting a unit would conflict with later unrelated work."""

    code = "DependentWorkExists"

    def __init__(self, target: str, conflicts: list[ConflictingWork]) -> None:
        self.target = target
        self.conflicts = conflicts
        labels = ", ".join(
            f"{conflict.unit_id or 'unattributed'} ({conflict.commit_id})" for conflict in conflicts
        )
        super().__init__(f"Reverting '{target}' conflicts with later work: {labels}")

    @property
    def conflicting_units(self) -> list[str]:
        units: list[str] = []
        for conflict in self.conflicts:
            label = conflict.unit_id or f"unattributed:{conflict.commit_id}"
            if label not in units:
                units.append(label)
        return units

    def details(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "conflicting_units": self.conflicting_units,
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
        }


class PartialRevertError(ConductorError):
    """Raised when revert execution halts mid-plan."""

    code = "PartialRevert"

    def __init__(
        self,
        *,
        plan_id: str,
        completed_steps: int,
        total_steps: int,
        commit_id: str,
        reason: str,
        conflict_files: list[str] | None = None,
    ) -> None:
        self.plan_id = plan_id
        self.completed_steps = completed_steps
        self.total_steps = total_steps
        self.failed_step = completed_steps + 1
        self.commit_id = commit_id
        self.reason = reason
        self.conflict_files = list(conflict_files or [])
        super().__init__(
            f"Revert halted at step {self.failed_step} of {total_steps} "
            f"(commit {commit_id}): {reason}"
        )

    def details(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "completed_steps": self.completed_steps,
            "total_steps": self.total_steps,
            "failed_step": self.failed_step,
            "commit_id": self.commit_id,
            "reason": self.reason,
            "conflict_files": self.conflict_files,
        }


class StalePlanError(ConductorError):
    """Raised when history moved between planning and execution."""

    code = "StalePlan"

    def __init__(self, plan_id: str, planned_head: str, current_head: str) -> None:
        self.plan_id = plan_id
        self.planned_head = planned_head
        self.current_head = current_head
        super().__init__(
            f"Plan {plan_id} was computed at {planned_head} but head is now {current_head}; "
            "request a new plan"
        )

    def details(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "planned_head": self.planned_head,
            "current_head": self.current_head,
        }


class BackendUnavailableError(ConductorError):
    """Raised when a version-control primitive fails outside our control."""

    code = "BackendUnavailable"

    def __init__(self, message: str, *, command: list[str] | None = None, stderr: str | None = None) -> None:
        self.command = list(command or [])
        self.stderr = stderr
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.command:
            payload["command"] = self.command
        if self.stderr:
            payload["stderr"] = self.stderr
        return payload


__all__ = [
    "BackendUnavailableError",
    "ConductorError",
    "ConflictingWork",
    "DependentWorkExistsError",
    "DuplicateCommitError",
    "IllegalTransitionError",
    "InvalidPlanError",
    "NotFoundError",
    "PartialRevertError",
    "StalePlanError",
]
