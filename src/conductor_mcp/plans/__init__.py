"""Track/phase/task models, status engine and plan store."""

from .loader import build_track, load_plan_definition, parse_plan_definition
from .models import (
    Phase,
    ProjectIndex,
    Task,
    TaskStatus,
    Track,
    TrackDefinition,
    TrackSummary,
    UnitRef,
    UnitStatus,
)
from .store import PlanStore

__all__ = [
    "Phase",
    "PlanStore",
    "ProjectIndex",
    "Task",
    "TaskStatus",
    "Track",
    "TrackDefinition",
    "TrackSummary",
    "UnitRef",
    "UnitStatus",
    "build_track",
    "load_plan_definition",
    "parse_plan_definition",
]
