"""Event-sourced commit ledger stored as one JSON-lines log per track."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable

from ..errors import DuplicateCommitError, InvalidPlanError, NotFoundError
from ..plans.models import Track, UnitRef
from ..plans.store import PlanStore, atomic_write
from ..vcs.base import same_commit
from .models import LedgerEntry

logger = logging.getLogger(__name__)


class CommitLedger:
    """Record which commits belong to which task.

    Nothing is ever removed. Current state (active commits, owners, what was
    reverted) is derived by folding the raw events.
    """

    def __init__(
        self,
        store: PlanStore,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _path(self, track_id: str) -> Path:
        return self._store.ledger_path(track_id)

    def history(self, track_id: str) -> list[LedgerEntry]:
        """Return the raw events for a track in sequence order."""

        path = self._path(track_id)
        if not path.exists():
            return []
        entries: list[LedgerEntry] = []
        for number, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
            if not line.strip():
                continue
            try:
                entries.append(LedgerEntry.from_record(json.loads(line)))
            except (ValueError, KeyError, TypeError) as exc:
                raise InvalidPlanError(
                    f"Ledger for track '{track_id}' is malformed at line {number}: {exc}",
                    unit_id=track_id,
                ) from exc
        entries.sort(key=lambda entry: entry.sequence)
        return entries

    def _all_events(self) -> list[LedgerEntry]:
        tracks_root = self._store.root / "tracks"
        if not tracks_root.is_dir():
            return []
        events: list[LedgerEntry] = []
        for track_dir in sorted(path for path in tracks_root.iterdir() if path.is_dir()):
            events.extend(self.history(track_dir.name))
        events.sort(key=lambda entry: entry.sequence)
        return events

    def _append(self, track_id: str, entry: LedgerEntry) -> None:
        path = self._path(track_id)
        existing = path.read_text(encoding="utf-8") if path.exists() else ""
        if existing and not existing.endswith("\n"):
            existing += "\n"
        atomic_write(path, existing + json.dumps(entry.to_record(), sort_keys=True) + "\n")

    def _next_sequence(self, events: Iterable[LedgerEntry]) -> int:
        return max((entry.sequence for entry in events), default=0) + 1

    def record(self, unit_id: str, commit_id: str) -> LedgerEntry:
        """Attribute ``commit_id`` to a task.

        Recording the same pair twice returns the original entry; attributing
        a commit that another unit already claims fails.
        """

        ref = UnitRef.parse(unit_id)
        if ref.kind != "task":
            raise InvalidPlanError(
                f"Commits can only be recorded against tasks, not {ref.kind} '{unit_id}'",
                unit_id=unit_id,
            )
        commit_id = commit_id.strip()
        if not commit_id:
            raise InvalidPlanError("Commit id must not be empty", unit_id=unit_id)

        events = self._all_events()
        for entry in events:
            if entry.kind == "commit" and same_commit(entry.commit_id, commit_id):
                if entry.unit_id == ref.key:
                    return entry
                raise DuplicateCommitError(commit_id, entry.unit_id, ref.key)

        entry = LedgerEntry(
            unit_id=ref.key,
            commit_id=commit_id,
            sequence=self._next_sequence(events),
            timestamp=self._clock(),
        )
        self._append(ref.track_id, entry)
        logger.info(
            "Recorded commit",
            extra={"unit_id": ref.key, "commit_id": commit_id, "sequence": entry.sequence},
        )
        return entry

    def mark_reverted(
        self,
        commit_id: str,
        *,
        revert_commit: str | None = None,
        plan_id: str | None = None,
    ) -> LedgerEntry:
        """Append a compensating marker for an undone commit."""

        events = self._all_events()
        original = next(
            (
                entry
                for entry in events
                if entry.kind == "commit" and same_commit(entry.commit_id, commit_id)
            ),
            None,
        )
        if original is None:
            raise NotFoundError("commit", commit_id)
        marker = LedgerEntry(
            unit_id=original.unit_id,
            commit_id=original.commit_id,
            sequence=self._next_sequence(events),
            timestamp=self._clock(),
            reverted=True,
            kind="revert",
            revert_commit=revert_commit,
            plan_id=plan_id,
        )
        self._append(UnitRef.parse(original.unit_id).track_id, marker)
        return marker

    def _reverted_ids(self, events: Iterable[LedgerEntry]) -> set[str]:
        # Markers repeat the recorded id, so exact matching is enough here.
        return {entry.commit_id for entry in events if entry.kind == "revert"}

    def active_entries(self, unit_id: str) -> list[LedgerEntry]:
        """Commit events under ``unit_id`` (any level) that were not reverted."""

        ref = UnitRef.parse(unit_id)
        events = self.history(ref.track_id)
        reverted = self._reverted_ids(events)
        return [
            entry
            for entry in events
            if entry.kind == "commit"
            and entry.commit_id not in reverted
            and ref.contains(UnitRef.parse(entry.unit_id))
        ]

    def entries_for(self, unit_id: str) -> list[str]:
        """Active commit ids for a unit in chronological order."""

        return [entry.commit_id for entry in self.active_entries(unit_id)]

    def entries_for_subtree(self, track_id: str) -> list[str]:
        """Active commit ids across a whole track, merged in global order."""

        return self.entries_for(UnitRef(track_id).key)

    def owner_of(self, commit_id: str) -> str | None:
        for entry in self._all_events():
            if entry.kind == "commit" and same_commit(entry.commit_id, commit_id):
                return entry.unit_id
        return None

    def is_reverted(self, commit_id: str) -> bool:
        reverted = self._reverted_ids(self._all_events())
        return any(same_commit(recorded, commit_id) for recorded in reverted)

    def attribution(self) -> dict[str, str]:
        """Map every recorded commit id to its owning task key."""

        return {
            entry.commit_id: entry.unit_id
            for entry in self._all_events()
            if entry.kind == "commit"
        }

    def neutralized_commits(self) -> set[str]:
        """Commits whose effect is already undone, plus the reverts that undid them."""

        neutral: set[str] = set()
        for entry in self._all_events():
            if entry.kind != "revert":
                continue
            neutral.add(entry.commit_id)
            if entry.revert_commit:
                neutral.add(entry.revert_commit)
        return neutral

    def attach_commits(self, track: Track) -> Track:
        """Return a copy of ``track`` with each task's active commits filled in."""

        updated = track.model_copy(deep=True)
        by_task: dict[str, list[str]] = {}
        for entry in self.active_entries(track.id):
            by_task.setdefault(entry.unit_id, []).append(entry.commit_id)
        for phase, task in updated.iter_tasks():
            task.commits = by_task.get(UnitRef(track.id, phase.id, task.id).key, [])
        return updated


__all__ = ["CommitLedger"]
