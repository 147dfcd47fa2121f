"""Sync report formatting functions.

Provides human-readable and machine-readable output for the control
surface:

- ``format_run_report`` -- post-run summary.
- ``format_status`` -- one-screen status snapshot.
- ``format_conflict`` -- single conflict with payload diff and merge hint.
- ``format_conflict_list`` -- one line per ledger entry.
- ``format_health``, ``format_statistics``, ``format_logs``.
- ``result_to_json`` -- structured dict for MCP tool output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .merger import generate_diff, suggest_merge

if TYPE_CHECKING:
    from .models import (
        Conflict,
        HealthStatus,
        LogEntry,
        SyncExecuteResult,
        SyncRun,
        SyncStatistics,
        SyncStatus,
    )


def _ts(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S UTC") if value else "never"


# ------------------------------------------------------------------
# Runs
# ------------------------------------------------------------------


def format_run_report(run: SyncRun) -> str:
    """Format a sealed run as human-readable text.

    Errors are only listed when there are some.

    Args:
        run: The sealed run.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    header = f"Sync run #{run.id} ({run.scope.value}): {run.outcome.value.upper()}"
    if run.timed_out:
        header += " (TIMED OUT)"
    lines.append(header)
    lines.append(f"Started: {_ts(run.started_at)}")
    lines.append(f"Finished: {_ts(run.finished_at)} ({run.duration_ms:.0f} ms)")
    lines.append("")
    lines.append(
        f"Scanned {run.items_scanned} records: "
        f"{run.items_synced} synced, {run.items_skipped} skipped, "
        f"{run.conflicts_detected} conflicts, {run.items_errored} errors"
    )

    if run.errors:
        lines.append("")
        lines.append("Errors:")
        for error in run.errors:
            lines.append(f"  {error}")

    return "\n".join(lines).rstrip()


def result_to_json(result: SyncExecuteResult) -> dict:
    """Convert a run result to a structured dict for JSON serialisation.

    Suitable for MCP ``structuredContent`` output.
    """
    data = {
        "success": result.success,
        "message": result.message,
        "synced_count": result.synced_count,
        "error_count": result.error_count,
        "errors": list(result.errors),
        "timestamp": result.timestamp.isoformat(),
    }
    if result.run is not None:
        data["run"] = result.run.model_dump(mode="json")
    return data


# ------------------------------------------------------------------
# Status and health
# ------------------------------------------------------------------


def format_status(status: SyncStatus) -> str:
    lines = [
        f"Auto-sync: {'enabled' if status.enabled else 'disabled'}"
        + (" (run in progress)" if status.running else ""),
        f"Primary: {status.primary_status}",
        f"Secondary: {status.secondary_status}",
        f"Last sync: {_ts(status.last_sync)}",
        f"Next sync: {_ts(status.next_sync) if status.next_sync else '-'}",
        f"Pending records: {status.pending_count}",
        f"Synced (last run): {status.synced_count}",
        f"Errors (last run): {status.error_count}",
        f"Pending conflicts: {status.pending_conflicts}",
    ]
    return "\n".join(lines)


def format_health(health: HealthStatus) -> str:
    lines = [f"Health: {health.status.upper()}"]
    for side, probe in (
        ("primary", health.primary),
        ("secondary", health.secondary),
    ):
        if probe.connected:
            latency = (
                f" ({probe.response_time:.0f} ms)"
                if probe.response_time is not None
                else ""
            )
            lines.append(f"  {side}: connected{latency}")
        else:
            lines.append(f"  {side}: disconnected ({probe.error or 'unknown'})")
    if health.last_run_errors:
        lines.append(f"  last run errors: {health.last_run_errors}")
    return "\n".join(lines)


def format_statistics(stats: SyncStatistics) -> str:
    last = (
        f"{stats.last_sync_duration_ms:.0f} ms"
        if stats.last_sync_duration_ms is not None
        else "-"
    )
    lines = [
        f"Statistics for the last {stats.days} day(s)",
        f"  Runs: {stats.total_syncs} "
        f"({stats.successful_syncs} success, {stats.partial_syncs} partial, "
        f"{stats.failed_syncs} failed)",
        f"  Average duration: {stats.average_duration_ms:.0f} ms",
        f"  Last duration: {last}",
        f"  Items synced: {stats.total_items_synced}",
        f"  Conflicts: {stats.conflicts_detected} detected, "
        f"{stats.conflicts_resolved} resolved",
    ]
    return "\n".join(lines)


# ------------------------------------------------------------------
# Conflicts
# ------------------------------------------------------------------


def format_conflict_list(conflicts: list[Conflict]) -> str:
    if not conflicts:
        return "No conflicts."
    lines = []
    for c in conflicts:
        line = (
            f"#{c.id} [{c.resolution.value}] {c.conflict_type.value} "
            f"on {c.record_id} (detected {_ts(c.detected_at)})"
        )
        if c.resolution_choice is not None:
            line += f" -> {c.resolution_choice.value} by {c.resolved_by}"
        lines.append(line)
    return "\n".join(lines)


def format_conflict(conflict: Conflict) -> str:
    """Format a single conflict for review.

    Shows a unified diff between the primary and secondary payloads, plus
    the suggested field-level merge while the conflict is pending.

    Args:
        conflict: The ledger entry.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append(
        f"Conflict #{conflict.id}: {conflict.conflict_type.value} on "
        f"{conflict.record_id} <-> {conflict.secondary_id or '-'}"
    )
    lines.append(
        f"Revisions: primary {conflict.left_revision}, "
        f"secondary {conflict.right_revision}"
    )
    lines.append("")

    left = None if conflict.left_deleted else conflict.left_payload
    right = None if conflict.right_deleted else conflict.right_payload
    diff_text = generate_diff(
        left,
        right,
        label_old=f"primary: {conflict.record_id}",
        label_new=f"secondary: {conflict.secondary_id or '-'}",
    )
    lines.append(diff_text.rstrip() if diff_text else "(no differences)")
    lines.append("")

    if conflict.is_pending:
        suggestion = suggest_merge(conflict)
        if suggestion.is_clean:
            lines.append("Suggested merge: clean (use choice 'custom')")
        else:
            lines.append(
                "Suggested merge keeps primary values for: "
                + ", ".join(suggestion.contested)
            )
    else:
        lines.append(
            f"Resolved with '{conflict.resolution_choice.value}' by "
            f"{conflict.resolved_by} at {_ts(conflict.resolved_at)}"
        )

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Logs
# ------------------------------------------------------------------


def format_logs(entries: list[LogEntry]) -> str:
    if not entries:
        return "No log entries."
    lines = []
    for e in entries:
        line = f"{_ts(e.timestamp)} {e.level.upper():7} {e.event}: {e.message}"
        lines.append(line)
    return "\n".join(lines)
