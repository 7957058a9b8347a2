"""Narrow capability interface over a version-control backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

# Ids shorter than this are compared exactly; longer ones may be abbreviated SHAs.
MIN_PREFIX_LENGTH = 7


@dataclass(slots=True)
class CommitRecord:
    """A single commit as reported by the backend log."""

    id: str
    timestamp: datetime
    changed_files: tuple[str, ...] = ()


@dataclass(slots=True)
class RevertOutcome:
    """Holds the outcome of reverting one commit."""

    commit_id: str
    ok: bool
    revert_commit: str | None = None
    conflict_files: list[str] = field(default_factory=list)
    message: str = ""


def same_commit(left: str, right: str) -> bool:
    """Return True when two ids name the same commit, allowing an abbreviated SHA on either side."""

    if left == right:
        return True
    shorter, longer = sorted((left, right), key=len)
    return len(shorter) >= MIN_PREFIX_LENGTH and longer.startswith(shorter)


class VersionControl(Protocol):
    """The three primitives the revert engine needs from a backend."""

    def log(self, since: str | None = None) -> list[CommitRecord]:
        """Return commits from ``since`` (inclusive) to HEAD, oldest first."""
        ...

    def revert_commit(self, commit_id: str) -> RevertOutcome:
        ...

    def current_head(self) -> str:
        ...


__all__ = ["MIN_PREFIX_LENGTH", "CommitRecord", "RevertOutcome", "VersionControl", "same_commit"]
