"""Tool registration for Conductor MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Literal

from fastmcp import Context, FastMCP

from ..config import ConductorSettings
from ..errors import ConductorError
from ..ledger import LedgerEntry
from ..plans import Track
from ..service import ConductorService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    start_track: Any
    activate_track: Any
    list_tracks: Any
    get_status: Any
    set_task_status: Any
    record_task_commit: Any
    record_verification: Any
    plan_revert: Any
    execute_revert: Any
    revert_history: Any


def track_payload(track: Track) -> dict[str, Any]:
    """Serialize a track including the ledger-derived commit lists."""

    payload = track.model_dump(mode="json")
    for phase_payload, phase in zip(payload["phases"], track.phases):
        for task_payload, task in zip(phase_payload["tasks"], phase.tasks):
            task_payload["commits"] = list(task.commits)
    return payload


def entry_payload(entry: LedgerEntry) -> dict[str, Any]:
    return entry.to_record()


def register_tools(
    server: FastMCP,
    *,
    service: ConductorService,
    settings: ConductorSettings,
) -> ToolHandles:
    """Register Conductor's MCP tools on the server."""

    def _guarded(
        context: Context | None,
        action: str,
        call: Callable[[], dict[str, Any]],
        extra: dict[str, Any],
    ) -> dict[str, Any]:
        try:
            payload = call()
        except ConductorError as exc:
            _emit_log(
                context,
                "warning",
                f"{action} failed",
                extra={**extra, "error": exc.code, "detail": str(exc)},
            )
            return {"ok": False, "error": exc.to_dict()}
        _emit_log(context, "info", action, extra=extra)
        return {"ok": True, **payload}

    def _start_track(
        definition: dict[str, Any] | None = None,
        *,
        definition_path: str | None = None,
        activate: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Create a track from a finalized plan definition (inline or YAML file)."""

        return _guarded(
            context,
            "Started track",
            lambda: {
                "track": track_payload(
                    service.start_track(
                        definition,
                        definition_path=Path(definition_path) if definition_path else None,
                        activate=activate,
                    )
                )
            },
            {"definition_path": definition_path},
        )

    def _activate_track(track_id: str, context: Context | None = None) -> dict[str, Any]:
        return _guarded(
            context,
            "Activated track",
            lambda: {"active_track": service.activate_track(track_id)},
            {"track_id": track_id},
        )

    def _list_tracks(context: Context | None = None) -> dict[str, Any]:
        return _guarded(context, "Listed tracks", service.list_tracks, {})

    def _get_status(track_id: str | None = None, context: Context | None = None) -> dict[str, Any]:
        return _guarded(
            context,
            "Track status",
            lambda: {"track": track_payload(service.get_status(track_id))},
            {"track_id": track_id},
        )

    def _set_task_status(
        task_id: str,
        status: Literal["pending", "in_progress", "done", "skipped"],
        context: Context | None = None,
    ) -> dict[str, Any]:
        return _guarded(
            context,
            "Task status changed",
            lambda: {"track": track_payload(service.set_task_status(task_id, status))},
            {"task_id": task_id, "status": status},
        )

    def _record_task_commit(
        task_id: str,
        commit_id: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        return _guarded(
            context,
            "Recorded task commit",
            lambda: {"entry": entry_payload(service.record_task_commit(task_id, commit_id))},
            {"task_id": task_id, "commit_id": commit_id},
        )

    def _record_verification(phase_id: str, context: Context | None = None) -> dict[str, Any]:
        return _guarded(
            context,
            "Recorded phase verification",
            lambda: {"track": track_payload(service.record_verification(phase_id))},
            {"phase_id": phase_id},
        )

    def _plan_revert(
        unit_id: str,
        *,
        force: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Compute the commits to undo for a task, phase or track."""

        return _guarded(
            context,
            "Planned revert",
            lambda: {"plan": service.plan_revert(unit_id, force=force).model_dump(mode="json")},
            {"unit_id": unit_id, "force": force},
        )

    def _execute_revert(
        plan: dict[str, Any],
        *,
        mark_reverted: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Apply a previously computed revert plan."""

        return _guarded(
            context,
            "Executed revert",
            lambda: {
                "result": service.execute_revert(plan, mark_reverted=mark_reverted).model_dump(
                    mode="json"
                )
            },
            {"plan_id": plan.get("plan_id"), "target": plan.get("target")},
        )

    def _revert_history(track_id: str, context: Context | None = None) -> dict[str, Any]:
        return _guarded(
            context,
            "Revert history",
            lambda: {"events": [entry_payload(entry) for entry in service.revert_history(track_id)]},
            {"track_id": track_id},
        )

    tool_start = server.tool(
        name="start_track",
        description=(
            "Create a new track from a finalized plan: {id?, title, phases: [{id, title, "
            "verification?, tasks: [{id, title}]}]}. Pass the plan inline or as a YAML path. "
            "The new track becomes active unless activate=false."
        ),
    )(_start_track)

    tool_activate = server.tool(
        name="activate_track",
        description="Make an existing track the single active track.",
    )(_activate_track)

    tool_list = server.tool(
        name="list_tracks",
        description="List all tracks with id, title, derived status, and the active track.",
    )(_list_tracks)

    tool_status = server.tool(
        name="get_status",
        description="Return the full track tree with derived statuses and per-task commits.",
    )(_get_status)

    tool_set_status = server.tool(
        name="set_task_status",
        description=(
            "Move a task forward: pending -> in_progress -> done, or to skipped. "
            "Backward moves are only performed by execute_revert."
        ),
    )(_set_task_status)

    tool_record_commit = server.tool(
        name="record_task_commit",
        description="Attribute a version-control commit to exactly one task.",
    )(_record_task_commit)

    tool_verify = server.tool(
        name="record_verification",
        description="Record manual verification for a phase whose tasks are all finished.",
    )(_record_verification)

    tool_plan_revert = server.tool(
        name="plan_revert",
        description=(
            "Plan the revert of a task, phase or track. Fails with DependentWorkExists when "
            "later work outside the unit touches the same files, unless force=true"
            + ("" if settings.allow_forced_revert else " (forced plans are disabled)")
            + "."
        ),
        annotations={
            "safety": {
                "level": "read-only",
                "notes": "Planning reads history and never modifies the repository",
            }
        },
    )(_plan_revert)

    tool_execute_revert = server.tool(
        name="execute_revert",
        description=(
            "Execute a revert plan newest-first. Halts with PartialRevert on the first "
            "conflict; mark_reverted=true forces a phase or track to the reverted status."
        ),
        annotations={
            "safety": {
                "level": "caution",
                "notes": "Creates revert commits in the repository; review the plan first",
            }
        },
    )(_execute_revert)

    tool_history = server.tool(
        name="revert_history",
        description="List the compensating revert markers recorded for a track.",
    )(_revert_history)

    return ToolHandles(
        start_track=tool_start,
        activate_track=tool_activate,
        list_tracks=tool_list,
        get_status=tool_status,
        set_task_status=tool_set_status,
        record_task_commit=tool_record_commit,
        record_verification=tool_verify,
        plan_revert=tool_plan_revert,
        execute_revert=tool_execute_revert,
        revert_history=tool_history,
    )


__all__ = ["register_tools", "ToolHandles", "track_payload"]


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
