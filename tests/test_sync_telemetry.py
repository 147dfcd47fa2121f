"""Tests for SyncTelemetry -- health, statistics, logs and retention."""

from __future__ import annotations

import csv
import io
import json
import threading
from datetime import timedelta

import pytest
from conftest import make_payload

from roadwatch_sync.adapters.base import PingResult
from roadwatch_sync.sync.models import (
    Conflict,
    ConflictType,
    LogEntry,
    ResolutionChoice,
    RunOutcome,
    SyncRun,
    utcnow,
)
from roadwatch_sync.sync.state import CONFLICTS_DOC, RUNS_DOC
from roadwatch_sync.sync.telemetry import SyncTelemetry


@pytest.fixture
def telemetry(primary, secondary, state_store, ledger, events):
    return SyncTelemetry(
        primary, secondary, state_store, ledger, events, probe_timeout=0.5
    )


def _save_runs(state_store, *runs: SyncRun) -> None:
    state_store.save(RUNS_DOC, [r.model_dump(mode="json") for r in runs])


def _run(
    run_id: int, age: timedelta, outcome=RunOutcome.SUCCESS, ms=100, **kw
):
    finished = utcnow() - age
    return SyncRun(
        id=run_id,
        started_at=finished - timedelta(milliseconds=ms),
        finished_at=finished,
        outcome=outcome,
        **kw,
    )


def _old_log_line(state_store, entry_id: int, age: timedelta) -> None:
    entry = LogEntry(
        id=entry_id,
        timestamp=utcnow() - age,
        event="run_finished",
        message="old run",
    )
    state_store.append_log_line(entry.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealth:
    def test_ok(self, telemetry):
        health = telemetry.health()
        assert health.status == "ok"
        assert health.primary.connected
        assert health.primary.response_time is not None

    def test_secondary_down_is_degraded(self, telemetry, secondary):
        secondary.online = False
        health = telemetry.health()
        assert health.status == "degraded"
        assert health.secondary.error == "secondary offline"

    def test_primary_down_is_error(self, telemetry, primary):
        primary.online = False
        health = telemetry.health()
        assert health.status == "error"
        assert health.secondary.connected

    def test_both_down_is_error(self, telemetry, primary, secondary):
        primary.online = False
        secondary.online = False
        assert telemetry.health().status == "error"

    def test_last_run_errors_degrade(self, telemetry, state_store):
        _save_runs(
            state_store,
            _run(1, timedelta(minutes=1), RunOutcome.PARTIAL, items_errored=2),
        )
        health = telemetry.health()
        assert health.status == "degraded"
        assert health.last_run_errors == 2

    def test_hung_probe_counts_as_disconnected(
        self, primary, secondary, state_store, ledger, events
    ):
        release = threading.Event()

        def hang():
            release.wait(5)
            return PingResult(connected=True)

        secondary.ping = hang
        telemetry = SyncTelemetry(
            primary, secondary, state_store, ledger, events, probe_timeout=0.1
        )
        try:
            health = telemetry.health()
        finally:
            release.set()

        assert health.status == "degraded"
        assert "timed out" in health.secondary.error


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class TestStatistics:
    def test_counts_within_window(self, telemetry, state_store, ledger):
        _save_runs(
            state_store,
            _run(1, timedelta(days=20), items_synced=50),
            _run(2, timedelta(days=2), items_synced=3, ms=100),
            _run(3, timedelta(days=1), RunOutcome.PARTIAL, items_synced=1, ms=300),
            _run(4, timedelta(hours=1), RunOutcome.FAILED, ms=200),
        )
        conflict_id = ledger.append(
            Conflict(
                record_id="pg-1",
                conflict_type=ConflictType.MODIFICATION,
                left_payload=make_payload(level=1),
                right_payload=make_payload(level=2),
            )
        )
        ledger.mark_resolved(conflict_id, ResolutionChoice.LEFT, "alice")

        stats = telemetry.statistics(days=7)

        assert stats.total_syncs == 3
        assert stats.successful_syncs == 1
        assert stats.partial_syncs == 1
        assert stats.failed_syncs == 1
        assert stats.total_items_synced == 4
        assert stats.average_duration_ms == pytest.approx(200.0)
        assert stats.last_sync_duration_ms == pytest.approx(200.0)
        assert stats.conflicts_detected == 1
        assert stats.conflicts_resolved == 1

    def test_empty_history(self, telemetry):
        stats = telemetry.statistics()
        assert stats.total_syncs == 0
        assert stats.average_duration_ms == 0.0
        assert stats.last_sync_duration_ms is None

    def test_rejects_non_positive_days(self, telemetry):
        with pytest.raises(ValueError):
            telemetry.statistics(days=0)


# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------


class TestLogs:
    def test_newest_first_with_paging(self, telemetry, events):
        for i in range(5):
            events.record("record_synced", f"synced pg-{i}", record_id=f"pg-{i}")

        page = telemetry.logs(limit=2, offset=1)

        assert [e.record_id for e in page] == ["pg-3", "pg-2"]

    def test_rejects_bad_paging(self, telemetry):
        with pytest.raises(ValueError):
            telemetry.logs(limit=0)
        with pytest.raises(ValueError):
            telemetry.logs(offset=-1)

    def test_export_json(self, telemetry, events):
        events.record("run_started", "Run #1 started", run_id=1, scope="full")

        data = json.loads(telemetry.export_logs("json"))

        assert data[0]["event"] == "run_started"
        assert data[0]["details"] == {"scope": "full"}

    def test_export_csv(self, telemetry, events):
        events.record("record_synced", "synced", record_id="pg-1", action="push")

        rows = list(
            csv.DictReader(io.StringIO(telemetry.export_logs("CSV").decode()))
        )

        assert rows[0]["record_id"] == "pg-1"
        assert rows[0]["run_id"] == ""
        assert json.loads(rows[0]["details"]) == {"action": "push"}

    def test_export_unknown_format(self, telemetry):
        with pytest.raises(ValueError, match="Unknown export format"):
            telemetry.export_logs("xml")


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------


class TestCleanup:
    def test_keeps_conflicts_whatever_their_age(
        self, telemetry, state_store, ledger, events
    ):
        """Cleanup prunes runs and logs, never conflicts."""
        _save_runs(
            state_store,
            _run(1, timedelta(days=90)),
            _run(2, timedelta(days=1)),
        )
        _old_log_line(state_store, 1, timedelta(days=90))
        events.record("run_finished", "recent run")
        old = Conflict(
            id=1,
            record_id="pg-1",
            conflict_type=ConflictType.MODIFICATION,
            detected_at=utcnow() - timedelta(days=90),
        )
        state_store.save(
            CONFLICTS_DOC,
            {"next_id": 2, "conflicts": [old.model_dump(mode="json")]},
        )

        deleted = telemetry.cleanup(days=30)

        assert deleted == 2
        assert [r.id for r in telemetry.runs()] == [2]
        assert [e.message for e in events.entries()] == ["recent run"]
        assert [c.id for c in ledger.list()] == [1]

    def test_rejects_negative_days(self, telemetry):
        with pytest.raises(ValueError):
            telemetry.cleanup(days=-1)

    def test_reset_clears_history_only(
        self, telemetry, state_store, ledger, events
    ):
        _save_runs(state_store, _run(1, timedelta(hours=1)))
        events.record("run_finished", "done")
        ledger.append(
            Conflict(record_id="pg-1", conflict_type=ConflictType.CREATION)
        )

        telemetry.reset()

        assert telemetry.runs() == []
        assert events.entries() == []
        assert ledger.pending_count() == 1
