"""FastMCP server bootstrap for Conductor."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import ConductorSettings, get_settings
from .errors import BackendUnavailableError, ConductorError
from .ledger import CommitLedger
from .plans import PlanStore
from .service import ConductorService
from .tools import register_tools
from .vcs import GitBackend, VersionControl


def configure_logging(level: str) -> None:
    """Configure root logging for the Conductor server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[ConductorSettings] = None,
    backend: VersionControl | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the plan store, ledger and backend."""

    settings = settings or get_settings()

    backend_metadata: dict[str, Any] = {
        "available": False,
        "kind": None,
        "repo_path": str(settings.repo_path),
        "version": None,
        "error": None,
    }

    if backend is None:
        try:
            git_backend = GitBackend(settings.repo_path, settings.git_path)
            backend_metadata["version"] = git_backend.version()
            backend = git_backend
            backend_metadata["available"] = True
            backend_metadata["kind"] = "git"
        except BackendUnavailableError as exc:
            backend_metadata["error"] = str(exc)
            backend = None
    else:
        backend_metadata["available"] = True
        backend_metadata["kind"] = type(backend).__name__

    store = PlanStore(settings.conductor_dir)
    ledger = CommitLedger(store)
    service = ConductorService(
        store,
        ledger,
        backend,
        allow_forced_revert=settings.allow_forced_revert,
        backend_error=backend_metadata["error"],
    )

    server = FastMCP(
        name="Conductor MCP",
        version=__version__,
        instructions=(
            "Conductor tracks features and bug fixes as tracks of phases and tasks, "
            "attributes commits to tasks, and reverts any task, phase or track without "
            "disturbing unrelated history. Record every commit with record_task_commit."
        ),
    )

    handles = register_tools(server, service=service, settings=settings)

    def build_status(request_id: Any = None) -> dict[str, Any]:
        store_error: str | None = None
        try:
            index = service.list_tracks()
        except ConductorError as exc:
            index = {"active_track": None, "tracks": []}
            store_error = str(exc)

        status_counts: dict[str, int] = {}
        for summary in index["tracks"]:
            status = summary.get("status", "unknown")
            status_counts[status] = status_counts.get(status, 0) + 1

        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "store": {
                "path": str(settings.conductor_dir),
                "error": store_error,
            },
            "backend": backend_metadata,
            "tracks": {
                "count": len(index["tracks"]),
                "active_track": index["active_track"],
                "status_counts": status_counts,
                "items": index["tracks"],
            },
            "reverts": {
                "count": service.revert_count,
                "recent": list(service.revert_results)[-5:],
                "forced_allowed": settings.allow_forced_revert,
            },
            "request_id": request_id,
        }

    @server.resource(
        "resource://conductor/status",
        name="conductor_status",
        title="Conductor MCP Status",
        description="Tracks, active track, backend availability and recent reverts.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing runtime state."""

        return json.dumps(build_status(getattr(context, "request_id", None)))

    setattr(server, "service", service)
    setattr(server, "backend", backend)
    setattr(server, "backend_metadata", backend_metadata)
    setattr(server, "tool_handles", handles)
    setattr(server, "build_status", build_status)
    return server


def main() -> None:
    """Entry point for running the Conductor MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Conductor MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "conductor_dir": str(settings.conductor_dir),
            "backend_available": getattr(server, "backend_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
