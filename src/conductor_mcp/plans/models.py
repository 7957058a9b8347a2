"""Track/phase/task models persisted by the plan store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterator, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

TaskStatus = Literal["pending", "in_progress", "done", "skipped"]
UnitStatus = Literal["pending", "in_progress", "done", "reverted"]
UnitKind = Literal["track", "phase", "task"]

TASK_STATUSES: frozenset[str] = frozenset({"pending", "in_progress", "done", "skipped"})
KEY_SEPARATOR = "/"


def _normalize_identifier(value: str, label: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{label} id must not be empty")
    if KEY_SEPARATOR in normalized:
        raise ValueError(f"{label} id '{normalized}' must not contain '{KEY_SEPARATOR}'")
    return normalized


@dataclass(frozen=True, slots=True)
class UnitRef:
    """Fully qualified address of a track, phase or task."""

    track_id: str
    phase_id: str | None = None
    task_id: str | None = None

    @property
    def kind(self) -> UnitKind:
        if self.task_id is not None:
            return "task"
        if self.phase_id is not None:
            return "phase"
        return "track"

    @property
    def key(self) -> str:
        parts = [self.track_id, self.phase_id, self.task_id]
        return KEY_SEPARATOR.join(part for part in parts if part is not None)

    def contains(self, other: "UnitRef") -> bool:
        """Return True when ``other`` is this unit or one of its descendants."""

        if self.track_id != other.track_id:
            return False
        if self.phase_id is not None and self.phase_id != other.phase_id:
            return False
        if self.task_id is not None and self.task_id != other.task_id:
            return False
        return True

    @classmethod
    def parse(cls, key: str) -> "UnitRef":
        parts = key.split(KEY_SEPARATOR)
        if not 1 <= len(parts) <= 3 or not all(part.strip() for part in parts):
            raise ValueError(f"Malformed unit key '{key}'")
        parts = [part.strip() for part in parts]
        return cls(*parts)  # type: ignore[arg-type]

    def __str__(self) -> str:
        return self.key


class Task(BaseModel):
    """Smallest unit of work; the only unit commits are attributed to."""

    id: str = Field(..., description="Identifier unique within the phase.")
    title: str = Field(..., description="Human-friendly task title.")
    status: TaskStatus = Field(default="pending")
    updated_at: datetime | None = None
    commits: list[str] = Field(
        default_factory=list,
        exclude=True,
        description="Active commit ids, filled from the commit ledger on read.",
    )

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        return _normalize_identifier(value, "Task")


class Phase(BaseModel):
    """Ordered sub-division of a track."""

    id: str = Field(..., description="Identifier unique within the track.")
    title: str
    status: UnitStatus = Field(default="pending", description="Derived from task statuses.")
    verification: bool = Field(
        default=False,
        description="Whether manual verification is required before the phase is done.",
    )
    verified_at: datetime | None = None
    reverted_at: datetime | None = Field(
        default=None,
        description="Set when the phase was forced to the terminal reverted status.",
    )
    tasks: list[Task] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        return _normalize_identifier(value, "Phase")

    def find_task(self, task_id: str) -> Task | None:
        return next((task for task in self.tasks if task.id == task_id), None)


class Track(BaseModel):
    """Top-level unit of work: a feature or a bug fix."""

    id: str = Field(..., description="Stable, human- and machine-readable identifier.")
    title: str
    status: UnitStatus = Field(default="pending", description="Derived from phase statuses.")
    created_at: datetime
    reverted_at: datetime | None = None
    phases: list[Phase] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        return _normalize_identifier(value, "Track")

    def find_phase(self, phase_id: str) -> Phase | None:
        return next((phase for phase in self.phases if phase.id == phase_id), None)

    def iter_tasks(self) -> Iterator[tuple[Phase, Task]]:
        for phase in self.phases:
            for task in phase.tasks:
                yield phase, task

    def unit_refs(self) -> Iterator[UnitRef]:
        """Yield every unit in the tree, parents before children."""

        yield UnitRef(self.id)
        for phase in self.phases:
            yield UnitRef(self.id, phase.id)
            for task in phase.tasks:
                yield UnitRef(self.id, phase.id, task.id)


class TrackSummary(BaseModel):
    """Index entry for a track."""

    id: str
    title: str
    status: UnitStatus
    created_at: datetime


class ProjectIndex(BaseModel):
    """Project-level document listing every track and the active one."""

    tracks: list[TrackSummary] = Field(default_factory=list)
    active_track: str | None = None

    def find(self, track_id: str) -> TrackSummary | None:
        return next((summary for summary in self.tracks if summary.id == track_id), None)


class TaskDefinition(BaseModel):
    id: str
    title: str

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        return _normalize_identifier(value, "Task")


class PhaseDefinition(BaseModel):
    id: str
    title: str
    verification: bool = False
    tasks: list[TaskDefinition] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        return _normalize_identifier(value, "Phase")

    @model_validator(mode="after")
    def _check_tasks(self) -> "PhaseDefinition":
        if not self.tasks:
            raise ValueError(f"Phase '{self.id}' must contain at least one task")
        seen: set[str] = set()
        for task in self.tasks:
            if task.id in seen:
                raise ValueError(f"Duplicate task id '{task.id}' in phase '{self.id}'")
            seen.add(task.id)
        return self


class TrackDefinition(BaseModel):
    """Finalized plan emitted by the planning agent when a track starts."""

    id: str | None = None
    title: str
    phases: list[PhaseDefinition] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _normalize_identifier(value, "Track")

    @field_validator("phases", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        return value

    @model_validator(mode="after")
    def _check_phases(self) -> "TrackDefinition":
        if not self.phases:
            raise ValueError("A track must contain at least one phase")
        seen: set[str] = set()
        for phase in self.phases:
            if phase.id in seen:
                raise ValueError(f"Duplicate phase id '{phase.id}'")
            seen.add(phase.id)
        return self


__all__ = [
    "KEY_SEPARATOR",
    "Phase",
    "PhaseDefinition",
    "ProjectIndex",
    "TASK_STATUSES",
    "Task",
    "TaskDefinition",
    "TaskStatus",
    "Track",
    "TrackDefinition",
    "TrackSummary",
    "UnitKind",
    "UnitRef",
    "UnitStatus",
]
