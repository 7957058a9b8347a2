"""File-backed plan store: one document per track plus a project index."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from ..errors import IllegalTransitionError, InvalidPlanError, NotFoundError
from .models import ProjectIndex, Track, TrackSummary, UnitRef
from .status import recompute

logger = logging.getLogger(__name__)

INDEX_FILENAME = "tracks.json"
PLAN_FILENAME = "plan.json"
LEDGER_FILENAME = "ledger.jsonl"


def atomic_write(path: Path, content: str) -> None:
    """Write ``content`` via a temp file and rename so readers never see a partial file."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def validate_track(track: Track) -> None:
    """Enforce identifier uniqueness and the reverted-phase rule."""

    phase_ids: set[str] = set()
    for phase in track.phases:
        if phase.id in phase_ids:
            raise InvalidPlanError(
                f"Duplicate phase id '{phase.id}' in track '{track.id}'",
                unit_id=UnitRef(track.id, phase.id).key,
            )
        phase_ids.add(phase.id)
        task_ids: set[str] = set()
        for task in phase.tasks:
            key = UnitRef(track.id, phase.id, task.id).key
            if task.id in task_ids:
                raise InvalidPlanError(f"Duplicate task id '{task.id}' in phase '{phase.id}'", unit_id=key)
            task_ids.add(task.id)
            frozen = track.reverted_at is not None or phase.reverted_at is not None
            if frozen and task.status == "done":
                raise IllegalTransitionError(
                    key, task.status, "done", reason="its phase or track has been reverted"
                )


class PlanStore:
    """Persist track trees and the project index under a conductor directory."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def index_path(self) -> Path:
        return self._root / INDEX_FILENAME

    def track_dir(self, track_id: str) -> Path:
        return self._root / "tracks" / track_id

    def plan_path(self, track_id: str) -> Path:
        return self.track_dir(track_id) / PLAN_FILENAME

    def ledger_path(self, track_id: str) -> Path:
        return self.track_dir(track_id) / LEDGER_FILENAME

    def exists(self, track_id: str) -> bool:
        return self.plan_path(track_id).is_file()

    def load_index(self) -> ProjectIndex:
        if not self.index_path.exists():
            return ProjectIndex()
        try:
            return ProjectIndex.model_validate_json(self.index_path.read_text(encoding="utf-8"))
        except ValidationError as exc:
            raise InvalidPlanError(f"Track index at {self.index_path} is malformed: {exc}") from exc

    def _write_index(self, index: ProjectIndex) -> None:
        atomic_write(self.index_path, index.model_dump_json(indent=2) + "\n")

    def load(self, track_id: str) -> Track:
        path = self.plan_path(track_id)
        if not path.is_file():
            raise NotFoundError("track", track_id)
        try:
            return Track.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as exc:
            raise InvalidPlanError(f"Plan for track '{track_id}' is malformed: {exc}", unit_id=track_id) from exc

    def save(self, track: Track) -> Track:
        """Recompute derived statuses, validate, and persist atomically."""

        current = recompute(track)
        validate_track(current)
        atomic_write(self.plan_path(current.id), current.model_dump_json(indent=2) + "\n")

        index = self.load_index()
        summary = TrackSummary(
            id=current.id,
            title=current.title,
            status=current.status,
            created_at=current.created_at,
        )
        for position, existing in enumerate(index.tracks):
            if existing.id == current.id:
                index.tracks[position] = summary
                break
        else:
            index.tracks.append(summary)
        self._write_index(index)

        logger.debug("Saved track", extra={"track_id": current.id, "status": current.status})
        return current

    def create(self, track: Track) -> Track:
        if self.exists(track.id) or self.load_index().find(track.id) is not None:
            raise InvalidPlanError(f"Track '{track.id}' already exists", unit_id=track.id)
        return self.save(track)

    def list_tracks(self) -> list[TrackSummary]:
        return list(self.load_index().tracks)

    def active_track(self) -> str | None:
        return self.load_index().active_track

    def set_active(self, track_id: str | None) -> None:
        index = self.load_index()
        if track_id is not None and index.find(track_id) is None:
            raise NotFoundError("track", track_id)
        index.active_track = track_id
        self._write_index(index)


__all__ = ["PlanStore", "atomic_write", "validate_track"]
