"""Conductor MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from conductor_mcp.config import ConductorSettings
from conductor_mcp.errors import BackendUnavailableError, ConductorError
from conductor_mcp.service import ConductorService
from conductor_mcp.tools import track_payload
from conductor_mcp.vcs import GitBackend


def load_service(settings: ConductorSettings, *, with_backend: bool = False) -> ConductorService:
    backend = None
    if with_backend:
        try:
            backend = GitBackend(settings.repo_path, settings.git_path)
        except BackendUnavailableError as exc:
            print(f"Backend unavailable: {exc}")
            raise SystemExit(1)
    return ConductorService.from_directory(
        settings.conductor_dir,
        backend,
        allow_forced_revert=settings.allow_forced_revert,
    )


def _fail(exc: ConductorError) -> None:
    print(json.dumps(exc.to_dict(), indent=2))
    raise SystemExit(1)


def cmd_tracks(args: argparse.Namespace) -> None:
    service = load_service(ConductorSettings())
    try:
        index = service.list_tracks()
    except ConductorError as exc:
        _fail(exc)
    if args.json:
        print(json.dumps(index, indent=2))
    else:
        for summary in index["tracks"]:
            marker = "*" if summary["id"] == index["active_track"] else " "
            print(f"{marker} {summary['id']} [{summary['status']}] {summary['title']}")


def cmd_status(args: argparse.Namespace) -> None:
    service = load_service(ConductorSettings())
    try:
        track = service.get_status(args.track_id)
    except ConductorError as exc:
        _fail(exc)
    print(json.dumps(track_payload(track), indent=2))


def cmd_ledger(args: argparse.Namespace) -> None:
    service = load_service(ConductorSettings())
    try:
        ref = service.resolve(args.track_id, kind="track")
        entries = service.ledger.history(ref.track_id)
    except ConductorError as exc:
        _fail(exc)
    print(json.dumps([entry.to_record() for entry in entries], indent=2))


def cmd_plan_revert(args: argparse.Namespace) -> None:
    service = load_service(ConductorSettings(), with_backend=True)
    try:
        plan = service.plan_revert(args.unit_id, force=args.force)
    except ConductorError as exc:
        _fail(exc)
    print(json.dumps(plan.model_dump(mode="json"), indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Conductor MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_tracks = sub.add_parser("tracks", help="List tracks and the active track")
    p_tracks.add_argument("--json", action="store_true", help="Output JSON")
    p_tracks.set_defaults(func=cmd_tracks)

    p_status = sub.add_parser("status", help="Show a track tree with derived statuses")
    p_status.add_argument("track_id", nargs="?", default=None)
    p_status.set_defaults(func=cmd_status)

    p_ledger = sub.add_parser("ledger", help="Dump the raw commit ledger for a track")
    p_ledger.add_argument("track_id")
    p_ledger.set_defaults(func=cmd_ledger)

    p_plan = sub.add_parser("plan-revert", help="Compute a revert plan without executing it")
    p_plan.add_argument("unit_id")
    p_plan.add_argument("--force", action="store_true", help="Plan across dependent work")
    p_plan.set_defaults(func=cmd_plan_revert)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
