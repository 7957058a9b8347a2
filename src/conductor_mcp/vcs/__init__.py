"""Version-control backends for the revert engine."""

from .base import CommitRecord, RevertOutcome, VersionControl, same_commit
from .git import GitBackend, GitCommandResult
from .memory import InMemoryBackend

__all__ = [
    "CommitRecord",
    "GitBackend",
    "GitCommandResult",
    "InMemoryBackend",
    "RevertOutcome",
    "VersionControl",
    "same_commit",
]
