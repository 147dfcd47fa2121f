"""Command-line control surface for the sync service.

Every sub-command maps to one ``SyncService`` operation and prints a
human-readable report, or the structured form with ``--json``.  Logging
goes to stderr (optionally also to a file) so stdout only carries the
command's output.

Exit codes:
    0  success
    1  operation failed (sync error, invalid input, unreachable store)
    2  usage error (argparse)
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from . import __version__
from .config import resolve_runtime_config
from .config_loader import ensure_config
from .logger import setup_logging
from .service import SyncService
from .sync.errors import SyncError
from .sync.models import ConflictType, Resolution, ResolutionChoice, RunScope
from .sync.reporter import (
    format_conflict,
    format_conflict_list,
    format_health,
    format_logs,
    format_run_report,
    format_statistics,
    format_status,
    result_to_json,
)
from .sync.telemetry import EXPORT_FORMATS

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _emit(args: argparse.Namespace, text: str, data: Any) -> None:
    if args.json:
        _print_json(data)
    else:
        print(text)


def _load_custom_json(raw: str | None) -> dict[str, Any] | None:
    """Parse ``--custom-json``: inline JSON or ``@path`` to a JSON file."""
    if raw is None:
        return None
    if raw.startswith("@"):
        raw = Path(raw[1:]).read_text(encoding="utf-8")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"--custom-json is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("--custom-json must be a JSON object")
    return data


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def cmd_status(service: SyncService, args: argparse.Namespace) -> int:
    status = service.get_status()
    _emit(args, format_status(status), status.model_dump(mode="json"))
    return 0


def cmd_run(service: SyncService, args: argparse.Namespace) -> int:
    result = service.run_once(args.scope)
    text = format_run_report(result.run) if result.run else result.message
    _emit(args, text, result_to_json(result))
    return 0 if result.success else 1


def cmd_conflicts(service: SyncService, args: argparse.Namespace) -> int:
    filters = {
        "resolution": args.resolution,
        "conflict_type": args.type,
        "record_id": args.record,
        "limit": args.limit,
    }
    conflicts = service.list_conflicts(
        {k: v for k, v in filters.items() if v is not None}
    )
    _emit(
        args,
        format_conflict_list(conflicts),
        [c.model_dump(mode="json") for c in conflicts],
    )
    return 0


def cmd_conflict(service: SyncService, args: argparse.Namespace) -> int:
    conflict = service.get_conflict(args.conflict_id)
    data = conflict.model_dump(mode="json")
    if conflict.is_pending:
        suggestion = service.suggest_merge(conflict.id)
        data["suggested_merge"] = {
            "payload": suggestion.payload.model_dump(mode="json"),
            "contested": list(suggestion.contested),
        }
    _emit(args, format_conflict(conflict), data)
    return 0


def cmd_resolve(service: SyncService, args: argparse.Namespace) -> int:
    custom = _load_custom_json(args.custom_json)
    resolved = service.resolve_conflict(
        args.conflict_id, args.choice, custom, resolved_by=args.by
    )
    _emit(
        args,
        f"Conflict #{resolved.id} on {resolved.record_id} resolved with "
        f"'{resolved.resolution_choice.value}'.",
        resolved.model_dump(mode="json"),
    )
    return 0


def cmd_auto_sync(service: SyncService, args: argparse.Namespace) -> int:
    changes: dict[str, Any] = {}
    if args.enable:
        changes["enabled"] = True
    if args.disable:
        changes["enabled"] = False
    if args.interval is not None:
        changes["interval_minutes"] = args.interval
    if args.window:
        changes["start_time"], changes["end_time"] = args.window
    if args.no_window:
        changes["start_time"] = changes["end_time"] = None

    config = (
        service.set_auto_sync_config(changes)
        if changes
        else service.get_auto_sync_config()
    )
    window = (
        f"{config.start_time}-{config.end_time}" if config.has_window else "any time"
    )
    _emit(
        args,
        f"Auto-sync: {'enabled' if config.enabled else 'disabled'}\n"
        f"Interval: {config.interval_minutes} min\n"
        f"Window: {window}",
        config.model_dump(mode="json"),
    )
    return 0


def cmd_stats(service: SyncService, args: argparse.Namespace) -> int:
    stats = service.get_statistics(args.days)
    _emit(args, format_statistics(stats), stats.model_dump(mode="json"))
    return 0


def cmd_health(service: SyncService, args: argparse.Namespace) -> int:
    health = service.get_health()
    _emit(args, format_health(health), health.model_dump(mode="json"))
    return 0 if health.status != "error" else 1


def cmd_logs(service: SyncService, args: argparse.Namespace) -> int:
    entries = service.get_logs(args.limit, args.offset)
    _emit(
        args,
        format_logs(entries),
        [e.model_dump(mode="json") for e in entries],
    )
    return 0


def cmd_export(service: SyncService, args: argparse.Namespace) -> int:
    data = service.export_logs(args.format)
    if args.output:
        Path(args.output).write_bytes(data)
        print(f"Wrote {len(data)} bytes to {args.output}", file=sys.stderr)
    else:
        sys.stdout.write(data.decode("utf-8"))
        if not data.endswith(b"\n"):
            sys.stdout.write("\n")
    return 0


def cmd_cleanup(service: SyncService, args: argparse.Namespace) -> int:
    result = service.cleanup_logs(args.days)
    _emit(args, f"Deleted {result['deleted_count']} history entries.", result)
    return 0


def cmd_reset(service: SyncService, args: argparse.Namespace) -> int:
    if not args.yes:
        print(
            "Error: reset clears all run history and logs; pass --yes to confirm",
            file=sys.stderr,
        )
        return 1
    service.reset()
    _emit(args, "Run history and sync logs cleared.", {"reset": True})
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="roadwatch-sync",
        description="RoadWatch Sync - reconcile road-damage reports between the primary and secondary stores",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show what the service sees right now
  roadwatch-sync status

  # Reconcile only records changed since the last successful run
  roadwatch-sync run --scope changed

  # Review and resolve a conflict
  roadwatch-sync conflicts --resolution pending
  roadwatch-sync conflict 3
  roadwatch-sync resolve 3 --choice left --by alice
  roadwatch-sync resolve 4 --choice custom --custom-json @merged.json

  # Run every 30 minutes between 06:00 and 22:00
  roadwatch-sync auto-sync --enable --interval 30 --window 06:00 22:00
        """,
    )
    parser.add_argument("--primary-url", help="Primary store API root")
    parser.add_argument("--primary-token", help="Primary store bearer token")
    parser.add_argument("--secondary-url", help="Secondary store API root")
    parser.add_argument(
        "--secondary-token", help="Secondary store bearer token"
    )
    parser.add_argument("--state-dir", help="Directory for persisted sync state")
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument(
        "--json", action="store_true", help="Print structured JSON output"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default="text",
        help="Log line format (default: text)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"roadwatch-sync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show sync status").set_defaults(
        func=cmd_status
    )

    p = sub.add_parser("run", help="Run one reconciliation pass now")
    p.add_argument(
        "--scope",
        choices=[s.value for s in RunScope],
        default=RunScope.FULL.value,
    )
    p.set_defaults(func=cmd_run)

    p = sub.add_parser("conflicts", help="List conflicts")
    p.add_argument("--resolution", choices=[r.value for r in Resolution])
    p.add_argument("--type", choices=[t.value for t in ConflictType])
    p.add_argument("--record", help="Primary record id")
    p.add_argument("--limit", type=int)
    p.set_defaults(func=cmd_conflicts)

    p = sub.add_parser("conflict", help="Show one conflict with its diff")
    p.add_argument("conflict_id", type=int)
    p.set_defaults(func=cmd_conflict)

    p = sub.add_parser("resolve", help="Resolve a pending conflict")
    p.add_argument("conflict_id", type=int)
    p.add_argument(
        "--choice",
        required=True,
        help=f"One of {[c.value for c in ResolutionChoice]} "
        "(aliases: primary/postgres, secondary/firebase)",
    )
    p.add_argument(
        "--custom-json",
        help="Payload for --choice custom: inline JSON or @path/to/file.json",
    )
    p.add_argument("--by", default="cli", help="Operator identity")
    p.set_defaults(func=cmd_resolve)

    p = sub.add_parser("auto-sync", help="Show or change auto-sync settings")
    toggle = p.add_mutually_exclusive_group()
    toggle.add_argument("--enable", action="store_true")
    toggle.add_argument("--disable", action="store_true")
    p.add_argument("--interval", type=int, help="Minutes between runs")
    window = p.add_mutually_exclusive_group()
    window.add_argument(
        "--window",
        nargs=2,
        metavar=("START", "END"),
        help="Daily window, HH:MM HH:MM local time",
    )
    window.add_argument(
        "--no-window", action="store_true", help="Remove the daily window"
    )
    p.set_defaults(func=cmd_auto_sync)

    p = sub.add_parser("stats", help="Aggregate run statistics")
    p.add_argument("--days", type=int, default=7)
    p.set_defaults(func=cmd_stats)

    sub.add_parser("health", help="Probe both stores").set_defaults(
        func=cmd_health
    )

    p = sub.add_parser("logs", help="Show sync log entries, newest first")
    p.add_argument("--limit", type=int, default=50)
    p.add_argument("--offset", type=int, default=0)
    p.set_defaults(func=cmd_logs)

    p = sub.add_parser("export", help="Export sync logs")
    p.add_argument("--format", choices=list(EXPORT_FORMATS), default="json")
    p.add_argument("--output", "-o", help="Write to file instead of stdout")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("cleanup", help="Prune old run and log history")
    p.add_argument(
        "--days", type=int, help="Keep this many days (default: retention)"
    )
    p.set_defaults(func=cmd_cleanup)

    p = sub.add_parser("reset", help="Clear run and log history")
    p.add_argument("--yes", action="store_true", help="Confirm the reset")
    p.set_defaults(func=cmd_reset)

    sub.add_parser(
        "init-config", help="Write a starter config file if none exists"
    ).set_defaults(func=None)

    return parser


_OVERRIDE_KEYS = (
    "primary_url",
    "primary_token",
    "secondary_url",
    "secondary_token",
    "state_dir",
    "insecure",
)


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    Returns:
        Process exit code.
    """
    args = build_parser().parse_args(argv)
    setup_logging(
        mode="cli",
        debug=args.debug,
        log_file=args.log_file,
        debug_format=args.log_format,
    )

    if args.command == "init-config":
        path = ensure_config()
        print(f"Config file: {path}")
        return 0

    overrides = {key: getattr(args, key) for key in _OVERRIDE_KEYS}
    overrides["debug"] = args.debug

    try:
        config, sources = resolve_runtime_config(overrides)
    except ValueError as e:
        print(f"Error: configuration error: {e}", file=sys.stderr)
        return 1
    logger.debug("Configuration loaded from: %s", ", ".join(sources))

    service = SyncService(config)
    try:
        return args.func(service, args)
    except (SyncError, ValueError, OSError) as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        service.shutdown(wait=None)


def run() -> None:
    """Console-script wrapper around ``main``."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    run()
