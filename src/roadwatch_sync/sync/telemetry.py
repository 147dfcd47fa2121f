"""Health, statistics and log queries over run and conflict history.

Everything here is derived on demand from the persisted documents, so
queries are cheap and safe to call while a run is in flight.

Key design choices:

* **Bounded probes** -- ``health()`` pings both stores concurrently and
  gives each probe at most ``probe_timeout`` seconds; a probe that does
  not answer in time counts as disconnected.
* **Conflicts are never pruned** -- ``cleanup()`` and ``reset()`` only
  touch run and log history.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import timedelta
from typing import TYPE_CHECKING

from .errors import AdapterError
from .models import (
    AdapterHealth,
    HealthStatus,
    LogEntry,
    RunOutcome,
    SyncRun,
    SyncStatistics,
    utcnow,
)
from .state import RUNS_DOC

if TYPE_CHECKING:
    from ..adapters.base import RecordStoreAdapter
    from .events import SyncEventLog
    from .ledger import ConflictLedger
    from .state import SyncStateStore

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 2.0
DEFAULT_RETENTION_DAYS = 30
EXPORT_FORMATS = ("json", "csv")

_CSV_COLUMNS = [
    "id",
    "timestamp",
    "level",
    "event",
    "message",
    "run_id",
    "record_id",
    "details",
]


class SyncTelemetry:
    """Query surface over run history, conflicts and the event log.

    Args:
        primary: Primary store adapter.
        secondary: Secondary store adapter.
        store: Persisted state.
        ledger: Conflict ledger.
        events: Durable event log.
        probe_timeout: Upper bound for each health probe, in seconds.
    """

    def __init__(
        self,
        primary: RecordStoreAdapter,
        secondary: RecordStoreAdapter,
        store: SyncStateStore,
        ledger: ConflictLedger,
        events: SyncEventLog,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
    ) -> None:
        self.primary = primary
        self.secondary = secondary
        self.store = store
        self.ledger = ledger
        self.events = events
        self.probe_timeout = probe_timeout

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def probe(self) -> tuple[AdapterHealth, AdapterHealth]:
        """Ping both stores concurrently within ``probe_timeout``."""
        executor = ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="roadwatch-probe"
        )
        try:
            futures = [
                executor.submit(adapter.ping)
                for adapter in (self.primary, self.secondary)
            ]
            results = [self._collect(future) for future in futures]
        finally:
            # A hung probe must not hold the caller
            executor.shutdown(wait=False, cancel_futures=True)
        return results[0], results[1]

    def health(self) -> HealthStatus:
        """Derive ``ok``/``degraded``/``error`` from probes and the last run.

        Losing the primary is an error.  Losing only the secondary, or
        errors in the last run, degrade.
        """
        primary, secondary = self.probe()
        last = self.last_run()
        last_errors = last.items_errored if last is not None else 0

        if not primary.connected:
            status = "error"
        elif not secondary.connected or last_errors > 0:
            status = "degraded"
        else:
            status = "ok"
        return HealthStatus(
            status=status,
            primary=primary,
            secondary=secondary,
            last_run_errors=last_errors,
        )

    def _collect(self, future) -> AdapterHealth:
        try:
            result = future.result(timeout=self.probe_timeout)
        except FuturesTimeoutError:
            return AdapterHealth(
                connected=False,
                error=f"probe timed out after {self.probe_timeout:g}s",
            )
        except AdapterError as exc:
            return AdapterHealth(connected=False, error=str(exc))
        return AdapterHealth(
            connected=result.connected,
            response_time=result.latency_ms,
            error=result.error,
        )

    # ------------------------------------------------------------------
    # Run history
    # ------------------------------------------------------------------

    def runs(self) -> list[SyncRun]:
        """Sealed runs, oldest first."""
        with self.store.lock:
            raw = self.store.load(RUNS_DOC, [])
        return [SyncRun.model_validate(item) for item in raw]

    def last_run(self) -> SyncRun | None:
        runs = self.runs()
        return runs[-1] if runs else None

    def statistics(self, days: int = 7) -> SyncStatistics:
        """Fold run and conflict history of the last *days* days.

        Raises:
            ValueError: If *days* is less than 1.
        """
        if days < 1:
            raise ValueError("days must be at least 1")
        cutoff = utcnow() - timedelta(days=days)
        runs = [r for r in self.runs() if r.started_at >= cutoff]
        conflicts = self.ledger.list()

        durations = [r.duration_ms for r in runs]
        return SyncStatistics(
            days=days,
            total_syncs=len(runs),
            successful_syncs=sum(
                1 for r in runs if r.outcome == RunOutcome.SUCCESS
            ),
            partial_syncs=sum(
                1 for r in runs if r.outcome == RunOutcome.PARTIAL
            ),
            failed_syncs=sum(
                1 for r in runs if r.outcome == RunOutcome.FAILED
            ),
            average_duration_ms=(
                sum(durations) / len(durations) if durations else 0.0
            ),
            last_sync_duration_ms=durations[-1] if durations else None,
            total_items_synced=sum(r.items_synced for r in runs),
            conflicts_detected=sum(
                1 for c in conflicts if c.detected_at >= cutoff
            ),
            conflicts_resolved=sum(
                1
                for c in conflicts
                if c.resolved_at is not None and c.resolved_at >= cutoff
            ),
        )

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def logs(self, limit: int = 50, offset: int = 0) -> list[LogEntry]:
        """Return log entries newest first.

        Raises:
            ValueError: If *limit* is not positive or *offset* negative.
        """
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if offset < 0:
            raise ValueError("offset must not be negative")
        entries = list(reversed(self.events.entries()))
        return entries[offset : offset + limit]

    def export_logs(self, fmt: str = "json") -> bytes:
        """Serialise every log entry, oldest first.

        Args:
            fmt: ``json`` or ``csv``.

        Raises:
            ValueError: Unknown format.
        """
        fmt = fmt.lower()
        entries = self.events.entries()
        if fmt == "json":
            data = [entry.model_dump(mode="json") for entry in entries]
            return json.dumps(data, indent=2, ensure_ascii=False).encode(
                "utf-8"
            )
        if fmt == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer)
            writer.writerow(_CSV_COLUMNS)
            for entry in entries:
                row = entry.model_dump(mode="json")
                row["details"] = json.dumps(row["details"], sort_keys=True)
                writer.writerow(
                    ["" if row[c] is None else row[c] for c in _CSV_COLUMNS]
                )
            return buffer.getvalue().encode("utf-8")
        raise ValueError(
            f"Unknown export format '{fmt}'. Valid formats: "
            f"{list(EXPORT_FORMATS)}"
        )

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def cleanup(self, days: int = DEFAULT_RETENTION_DAYS) -> int:
        """Drop runs and log entries older than *days* days.

        Conflicts are kept whatever their age.

        Returns:
            Number of runs plus log entries removed.

        Raises:
            ValueError: If *days* is negative.
        """
        if days < 0:
            raise ValueError("days must not be negative")
        cutoff = utcnow() - timedelta(days=days)
        with self.store.lock:
            runs = self.runs()
            kept_runs = [r for r in runs if r.finished_at >= cutoff]
            entries = self.events.entries()
            kept_entries = [e for e in entries if e.timestamp >= cutoff]

            self.store.save(
                RUNS_DOC, [r.model_dump(mode="json") for r in kept_runs]
            )
            self.store.rewrite_log_lines(
                [e.model_dump(mode="json") for e in kept_entries]
            )
        deleted = (len(runs) - len(kept_runs)) + (
            len(entries) - len(kept_entries)
        )
        logger.info(
            "Cleanup removed %d record(s) older than %d day(s)",
            deleted,
            days,
        )
        return deleted

    def reset(self) -> None:
        """Clear run and log history."""
        with self.store.lock:
            self.store.save(RUNS_DOC, [])
            self.store.rewrite_log_lines([])
        logger.info("Run and log history cleared")
