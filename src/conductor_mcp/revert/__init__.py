"""Revert planning and execution."""

from .executor import RevertExecutor
from .models import ConflictSummary, RevertPlan, RevertResult, RevertedCommit
from .planner import RevertPlanner

__all__ = [
    "ConflictSummary",
    "RevertExecutor",
    "RevertPlan",
    "RevertPlanner",
    "RevertResult",
    "RevertedCommit",
]
