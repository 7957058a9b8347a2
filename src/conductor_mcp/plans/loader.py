"""Plan definition loading utilities."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..errors import InvalidPlanError
from .models import Phase, Task, Track, TrackDefinition

_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


def slugify(title: str, *, max_length: int = 40) -> str:
    slug = _SLUG_PATTERN.sub("_", title.lower()).strip("_")
    return slug[:max_length].rstrip("_") or "track"


def parse_plan_definition(document: Any, *, source: str = "definition") -> TrackDefinition:
    """Validate a mapping into a :class:`TrackDefinition`."""

    if not isinstance(document, dict):
        raise InvalidPlanError(f"Plan {source} must be a mapping, got {type(document).__name__}")
    try:
        return TrackDefinition.model_validate(document)
    except ValidationError as exc:
        raise InvalidPlanError(f"Plan validation error in {source}: {exc}") from exc


def load_plan_definition(path: Path) -> TrackDefinition:
    """Load a plan definition from a YAML (or JSON) file."""

    path = Path(path)
    if not path.is_file():
        raise InvalidPlanError(f"Plan definition {path} does not exist")
    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise InvalidPlanError(f"Failed to parse YAML in {path}: {exc}") from exc
    return parse_plan_definition(document, source=str(path))


def build_track(definition: TrackDefinition, *, now: datetime | None = None) -> Track:
    """Materialise a finalized definition into a fresh pending track."""

    created_at = now or datetime.now(timezone.utc)
    track_id = definition.id or f"{slugify(definition.title)}_{created_at.strftime('%Y%m%d')}"
    return Track(
        id=track_id,
        title=definition.title,
        created_at=created_at,
        phases=[
            Phase(
                id=phase.id,
                title=phase.title,
                verification=phase.verification,
                tasks=[Task(id=task.id, title=task.title) for task in phase.tasks],
            )
            for phase in definition.phases
        ],
    )


__all__ = ["build_track", "load_plan_definition", "parse_plan_definition", "slugify"]
