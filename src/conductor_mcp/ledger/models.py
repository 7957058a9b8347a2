"""Records stored in the append-only commit ledger."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

EntryKind = Literal["commit", "revert"]


@dataclass(slots=True)
class LedgerEntry:
    """One ledger event.

    ``commit`` events attribute a commit to a task. ``revert`` events are
    compensating markers: they repeat the unit and commit ids with
    ``reverted=True`` and never replace the original event.
    """

    unit_id: str
    commit_id: str
    sequence: int
    timestamp: datetime
    reverted: bool = False
    kind: EntryKind = "commit"
    revert_commit: str | None = None
    plan_id: str | None = None

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "kind": self.kind,
            "unit_id": self.unit_id,
            "commit_id": self.commit_id,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "reverted": self.reverted,
        }
        if self.revert_commit is not None:
            record["revert_commit"] = self.revert_commit
        if self.plan_id is not None:
            record["plan_id"] = self.plan_id
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "LedgerEntry":
        return cls(
            unit_id=str(record["unit_id"]),
            commit_id=str(record["commit_id"]),
            sequence=int(record["sequence"]),
            timestamp=datetime.fromisoformat(record["timestamp"]),
            reverted=bool(record.get("reverted", False)),
            kind=record.get("kind", "commit"),
            revert_commit=record.get("revert_commit"),
            plan_id=record.get("plan_id"),
        )


__all__ = ["EntryKind", "LedgerEntry"]
