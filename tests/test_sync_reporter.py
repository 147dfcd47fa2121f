"""Tests for sync report formatting functions."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from conftest import make_payload

from roadwatch_sync.sync.models import (
    AdapterHealth,
    Conflict,
    ConflictType,
    HealthStatus,
    LogEntry,
    Resolution,
    ResolutionChoice,
    RunOutcome,
    RunScope,
    SyncExecuteResult,
    SyncRun,
    SyncStatistics,
    SyncStatus,
)
from roadwatch_sync.sync.reporter import (
    format_conflict,
    format_conflict_list,
    format_health,
    format_logs,
    format_run_report,
    format_statistics,
    format_status,
    result_to_json,
)

T0 = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


def _run(**overrides) -> SyncRun:
    defaults = {
        "id": 4,
        "scope": RunScope.FULL,
        "started_at": T0,
        "finished_at": T0 + timedelta(milliseconds=250),
        "outcome": RunOutcome.SUCCESS,
        "items_scanned": 5,
        "items_synced": 3,
        "items_skipped": 1,
        "conflicts_detected": 1,
    }
    defaults.update(overrides)
    return SyncRun(**defaults)


def _conflict(**overrides) -> Conflict:
    defaults = {
        "id": 2,
        "record_id": "pg-1",
        "secondary_id": "fb-1",
        "conflict_type": ConflictType.MODIFICATION,
        "left_payload": make_payload(level=2),
        "right_payload": make_payload(level=8),
        "left_revision": 5,
        "right_revision": 6,
        "detected_at": T0,
    }
    defaults.update(overrides)
    return Conflict(**defaults)


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


class TestFormatRunReport:
    def test_header(self):
        text = format_run_report(_run())
        assert text.startswith("Sync run #4 (full): SUCCESS")

    def test_counts(self):
        text = format_run_report(_run())
        assert (
            "Scanned 5 records: 3 synced, 1 skipped, 1 conflicts, 0 errors"
            in text
        )
        assert "(250 ms)" in text

    def test_errors_listed_only_when_present(self):
        assert "Errors:" not in format_run_report(_run())
        text = format_run_report(
            _run(
                outcome=RunOutcome.PARTIAL,
                items_errored=1,
                errors=["pg-3: secondary: store offline"],
            )
        )
        assert "Errors:" in text
        assert "  pg-3: secondary: store offline" in text

    def test_timed_out_marker(self):
        text = format_run_report(
            _run(outcome=RunOutcome.PARTIAL, timed_out=True)
        )
        assert "PARTIAL (TIMED OUT)" in text


class TestResultToJson:
    def test_structure(self):
        result = SyncExecuteResult(
            success=True,
            message="ok",
            synced_count=3,
            timestamp=T0,
            run=_run(),
        )
        data = result_to_json(result)
        assert data["success"] is True
        assert data["synced_count"] == 3
        assert data["timestamp"] == T0.isoformat()
        assert data["run"]["outcome"] == "success"

    def test_without_run(self):
        result = SyncExecuteResult(success=False, message="unreachable")
        assert "run" not in result_to_json(result)


# ---------------------------------------------------------------------------
# Status, health, statistics
# ---------------------------------------------------------------------------


class TestFormatStatus:
    def test_fields(self):
        status = SyncStatus(
            enabled=True,
            running=True,
            last_sync=T0,
            pending_count=2,
            pending_conflicts=1,
            primary_status="connected",
            secondary_status="disconnected",
        )
        text = format_status(status)
        assert "Auto-sync: enabled (run in progress)" in text
        assert "Secondary: disconnected" in text
        assert "Last sync: 2026-03-02 10:00:00 UTC" in text
        assert "Next sync: -" in text
        assert "Pending conflicts: 1" in text

    def test_never_synced(self):
        status = SyncStatus(
            enabled=False,
            primary_status="connected",
            secondary_status="connected",
        )
        assert "Last sync: never" in format_status(status)


class TestFormatHealth:
    def test_degraded(self):
        health = HealthStatus(
            status="degraded",
            primary=AdapterHealth(connected=True, response_time=12.0),
            secondary=AdapterHealth(connected=False, error="timeout"),
        )
        text = format_health(health)
        assert text.startswith("Health: DEGRADED")
        assert "primary: connected (12 ms)" in text
        assert "secondary: disconnected (timeout)" in text


class TestFormatStatistics:
    def test_fields(self):
        stats = SyncStatistics(
            days=7,
            total_syncs=4,
            successful_syncs=3,
            failed_syncs=1,
            average_duration_ms=120.0,
            conflicts_detected=2,
            conflicts_resolved=1,
        )
        text = format_statistics(stats)
        assert "last 7 day(s)" in text
        assert "Runs: 4 (3 success, 0 partial, 1 failed)" in text
        assert "Last duration: -" in text
        assert "Conflicts: 2 detected, 1 resolved" in text


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


class TestFormatConflict:
    def test_pending_shows_diff_and_merge_hint(self):
        text = format_conflict(_conflict())
        assert "Conflict #2: modification on pg-1 <-> fb-1" in text
        assert "Revisions: primary 5, secondary 6" in text
        assert "-level: 2" in text
        assert "Suggested merge keeps primary values for: level" in text

    def test_resolved_shows_decision(self):
        text = format_conflict(
            _conflict(
                resolution=Resolution.RESOLVED,
                resolution_choice=ResolutionChoice.RIGHT,
                resolved_by="alice",
                resolved_at=T0,
            )
        )
        assert "Resolved with 'right' by alice" in text
        assert "Suggested merge" not in text

    def test_deleted_side(self):
        text = format_conflict(
            _conflict(
                conflict_type=ConflictType.DELETION, left_deleted=True
            )
        )
        assert "<deleted>" in text


class TestFormatConflictList:
    def test_empty(self):
        assert format_conflict_list([]) == "No conflicts."

    def test_lines(self):
        text = format_conflict_list(
            [
                _conflict(),
                _conflict(
                    id=3,
                    resolution=Resolution.RESOLVED,
                    resolution_choice=ResolutionChoice.LEFT,
                    resolved_by="bob",
                ),
            ]
        )
        lines = text.splitlines()
        assert lines[0].startswith("#2 [pending] modification on pg-1")
        assert lines[1].endswith("-> left by bob")


class TestFormatLogs:
    def test_empty(self):
        assert format_logs([]) == "No log entries."

    def test_line(self):
        entry = LogEntry(
            id=1,
            timestamp=T0,
            level="warning",
            event="record_retry",
            message="retrying pg-1",
        )
        text = format_logs([entry])
        assert "2026-03-02 10:00:00 UTC WARNING record_retry: retrying pg-1" in text
