"""In-memory version-control backend used by tests and dry runs."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable

from ..errors import BackendUnavailableError, NotFoundError
from .base import CommitRecord, RevertOutcome, same_commit

_EPOCH = datetime(2025, 1, 1, tzinfo=timezone.utc)


class InMemoryBackend:
    """Deterministic fake backend with scripted conflicts."""

    def __init__(self, commits: Iterable[tuple[str, Iterable[str]]] | None = None) -> None:
        self._history: list[CommitRecord] = []
        self.conflicts: dict[str, list[str]] = {}
        self.unavailable: set[str] = set()
        self.reverted: list[str] = []
        self.invocations: list[tuple[str, ...]] = []
        for commit_id, files in commits or []:
            self.commit(commit_id, files)

    @property
    def history(self) -> list[CommitRecord]:
        return list(self._history)

    def commit(self, commit_id: str, files: Iterable[str]) -> CommitRecord:
        """Append a commit to the fake history."""

        if any(record.id == commit_id for record in self._history):
            raise ValueError(f"Commit {commit_id} already exists")
        record = CommitRecord(
            id=commit_id,
            timestamp=_EPOCH + timedelta(minutes=len(self._history)),
            changed_files=tuple(files),
        )
        self._history.append(record)
        return record

    def script_conflict(self, commit_id: str, files: Iterable[str] = ()) -> None:
        """Make the next revert of ``commit_id`` report a conflict."""

        self.conflicts[commit_id] = list(files)

    def current_head(self) -> str:
        self.invocations.append(("current_head",))
        if not self._history:
            raise BackendUnavailableError("Repository has no commits")
        return self._history[-1].id

    def _position(self, commit_id: str) -> int:
        """Index of ``commit_id`` in history; abbreviated SHAs resolve like git does."""

        matches = [
            index for index, record in enumerate(self._history) if same_commit(commit_id, record.id)
        ]
        if len(matches) != 1:
            raise NotFoundError("commit", commit_id)
        return matches[0]

    def log(self, since: str | None = None) -> list[CommitRecord]:
        self.invocations.append(("log", since or ""))
        if since is None:
            return list(self._history)
        return list(self._history[self._position(since):])

    def revert_commit(self, commit_id: str) -> RevertOutcome:
        self.invocations.append(("revert", commit_id))
        if commit_id in self.unavailable:
            raise BackendUnavailableError(f"Backend refused to revert {commit_id}")
        original = self._history[self._position(commit_id)]
        if commit_id in self.conflicts:
            files = self.conflicts.pop(commit_id) or list(original.changed_files)
            return RevertOutcome(
                commit_id=commit_id,
                ok=False,
                conflict_files=files,
                message=f"could not revert {commit_id}",
            )
        revert = self.commit(f"revert-{original.id}", original.changed_files)
        self.reverted.append(commit_id)
        return RevertOutcome(commit_id=commit_id, ok=True, revert_commit=revert.id)


__all__ = ["InMemoryBackend"]
