"""Revert plan and result models exchanged with callers."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from ..errors import ConflictingWork
from ..plans.models import UnitKind


class ConflictSummary(BaseModel):
    commit_id: str
    unit_id: str | None = None
    files: list[str] = Field(default_factory=list)

    @classmethod
    def from_work(cls, work: ConflictingWork) -> "ConflictSummary":
        return cls(commit_id=work.commit_id, unit_id=work.unit_id, files=list(work.files))


class RevertPlan(BaseModel):
    """Ordered inverse operations and status resets for one logical unit."""

    plan_id: str
    target: str = Field(..., description="Canonical key of the unit being reverted.")
    target_kind: UnitKind
    head: str = Field(..., description="Version-control head the plan was computed against.")
    commits: list[str] = Field(
        default_factory=list, description="Commit ids to undo, newest first."
    )
    reset_units: list[str] = Field(
        default_factory=list, description="Unit keys whose status returns to pending."
    )
    conflicts: list[ConflictSummary] = Field(
        default_factory=list,
        description="Later work outside the target that overlaps; only non-empty for forced plans.",
    )
    forced: bool = False
    created_at: datetime

    @property
    def conflicting_units(self) -> list[str]:
        units: list[str] = []
        for conflict in self.conflicts:
            label = conflict.unit_id or f"unattributed:{conflict.commit_id}"
            if label not in units:
                units.append(label)
        return units


class RevertedCommit(BaseModel):
    commit_id: str
    revert_commit: str | None = None


class RevertResult(BaseModel):
    """Outcome of executing a plan that did not halt on a conflict."""

    plan_id: str
    target: str
    status: Literal["completed", "cancelled"]
    total_steps: int
    completed_steps: int
    reverted: list[RevertedCommit] = Field(default_factory=list)
    reset_units: list[str] = Field(default_factory=list)
    track_status: str | None = None
    finished_at: datetime


__all__ = ["ConflictSummary", "RevertPlan", "RevertResult", "RevertedCommit"]
