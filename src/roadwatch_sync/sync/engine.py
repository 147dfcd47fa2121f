"""Sync orchestrator that runs one reconciliation pass across both stores.

The ``SyncOrchestrator`` ties together state, detector, ledger and the
two store adapters into a complete run.  It:

1. Takes the run lock (a second caller gets ``AlreadyRunning``).
2. Probes both stores; if either is down the run never starts
   (``AdapterUnavailable``, no ``SyncRun`` is recorded).
3. Walks the primary's candidate records, finds each counterpart and
   classifies the pair against its sync mark.
   Each pair is read again, classified and written under its record
   lock, the same lock the resolver holds while applying a decision.
4. Walks the secondary's candidates for records that originated there.
5. Applies non-conflicting decisions with bounded retries and appends
   conflicts to the ledger.
6. Updates the sync mark per record for crash safety.
7. Seals and persists a ``SyncRun``.

Error handling is per-record: a single record failure does not abort
the run.  A run that outlives its wall-clock bound is sealed ``failed``
with whatever it completed.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from .detector import classify
from .errors import (
    AdapterError,
    AdapterUnavailable,
    AlreadyRunning,
    RunTimeout,
)
from .identity import primary_id_for, secondary_id_for
from .models import (
    RunOutcome,
    RunScope,
    SyncableRecord,
    SyncAction,
    SyncRun,
    utcnow,
)
from .retry import RetryPolicy, call_with_retry
from .state import RUNS_DOC

if TYPE_CHECKING:
    from ..adapters.base import RecordStoreAdapter
    from .events import SyncEventLog
    from .ledger import ConflictLedger
    from .state import SyncStateStore

logger = logging.getLogger(__name__)

DEFAULT_RUN_TIMEOUT = 300.0

_PRIMARY = "primary"
_SECONDARY = "secondary"


@dataclass
class _RunTally:
    """Mutable counters accumulated while a run is in flight."""

    scanned: int = 0
    synced: int = 0
    errored: int = 0
    skipped: int = 0
    conflicts: int = 0
    errors: list[str] = field(default_factory=list)
    timed_out: bool = False
    aborted: bool = False
    seen_primary: set[str] = field(default_factory=set)
    seen_secondary: set[str] = field(default_factory=set)
    max_primary_revision: int = 0
    max_secondary_revision: int = 0
    pending_conflicts: set[str] = field(default_factory=set)


class SyncOrchestrator:
    """Run reconciliation passes between the primary and secondary store.

    Args:
        primary: Primary store adapter.
        secondary: Secondary store adapter.
        store: Persisted sync state.
        ledger: Conflict ledger.
        events: Durable event log.
        retry: Per-record write retry policy.
        run_timeout_seconds: Wall-clock bound of one run.
        sleeper: Injected ``time.sleep`` replacement for backoff.
        clock: Injected monotonic clock for the wall-clock bound.
    """

    def __init__(
        self,
        primary: RecordStoreAdapter,
        secondary: RecordStoreAdapter,
        store: SyncStateStore,
        ledger: ConflictLedger,
        events: SyncEventLog,
        retry: RetryPolicy | None = None,
        run_timeout_seconds: float = DEFAULT_RUN_TIMEOUT,
        sleeper: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.primary = primary
        self.secondary = secondary
        self.store = store
        self.ledger = ledger
        self.events = events
        self.retry = retry or RetryPolicy()
        self.run_timeout_seconds = run_timeout_seconds
        self._sleeper = sleeper
        self._clock = clock
        self._run_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def run_once(self, scope: RunScope | str | None = None) -> SyncRun:
        """Execute one reconciliation pass.

        Args:
            scope: ``full`` (default), ``pending`` or ``changed``.

        Returns:
            The sealed ``SyncRun``.

        Raises:
            AlreadyRunning: Another run holds the lock.
            AdapterUnavailable: A store failed its connectivity probe.
            ValueError: Unknown scope.
        """
        run_scope = RunScope(scope) if scope else RunScope.FULL
        if not self._run_lock.acquire(blocking=False):
            raise AlreadyRunning()
        try:
            self._probe()
            return self._execute(run_scope)
        finally:
            self._run_lock.release()

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def _probe(self) -> None:
        down: list[str] = []
        for side, adapter in (
            (_PRIMARY, self.primary),
            (_SECONDARY, self.secondary),
        ):
            try:
                result = adapter.ping()
                connected, error = result.connected, result.error
            except AdapterError as exc:
                connected, error = False, str(exc)
            if not connected:
                down.append(side)
                logger.warning("Probe of %s failed: %s", side, error)
        if down:
            exc = AdapterUnavailable(down)
            self.events.record(
                "run_aborted",
                str(exc),
                level="error",
                sides=down,
            )
            raise exc

    def _execute(self, scope: RunScope) -> SyncRun:
        run_id = self._allocate_run_id()
        started_at = utcnow()
        deadline = self._clock() + self.run_timeout_seconds
        tally = _RunTally(pending_conflicts=self.ledger.pending_record_ids())
        state = self.store.load_state()

        self.events.record(
            "run_started",
            f"Run #{run_id} started ({scope.value})",
            run_id=run_id,
            scope=scope.value,
        )

        try:
            self._primary_pass(run_id, scope, state, tally, deadline)
            self._secondary_pass(run_id, scope, state, tally, deadline)
        except RunTimeout as exc:
            tally.timed_out = True
            tally.errors.append(str(exc))
            self.events.record(
                "run_timeout", str(exc), level="error", run_id=run_id
            )
        except AdapterError as exc:
            # Enumeration failed; nothing more can be scanned
            tally.aborted = True
            tally.errors.append(str(exc))
            self.events.record(
                "run_error", str(exc), level="error", run_id=run_id
            )
        except Exception as exc:
            logger.exception("Run #%d aborted by an unexpected error", run_id)
            tally.aborted = True
            tally.errors.append(f"unexpected error: {exc}")
            self.events.record(
                "run_error",
                f"unexpected error: {exc}",
                level="error",
                run_id=run_id,
            )

        return self._seal(run_id, scope, started_at, tally)

    def _seal(
        self,
        run_id: int,
        scope: RunScope,
        started_at: datetime,
        tally: _RunTally,
    ) -> SyncRun:
        if tally.timed_out or tally.aborted:
            outcome = RunOutcome.FAILED
        elif tally.errored == 0:
            outcome = RunOutcome.SUCCESS
        elif tally.errored >= tally.scanned:
            outcome = RunOutcome.FAILED
        else:
            outcome = RunOutcome.PARTIAL

        run = SyncRun(
            id=run_id,
            scope=scope,
            started_at=started_at,
            finished_at=utcnow(),
            outcome=outcome,
            items_scanned=tally.scanned,
            items_synced=tally.synced,
            items_errored=tally.errored,
            items_skipped=tally.skipped,
            conflicts_detected=tally.conflicts,
            errors=tally.errors,
            timed_out=tally.timed_out,
        )

        clean = outcome == RunOutcome.SUCCESS
        with self.store.lock:
            runs = self.store.load(RUNS_DOC, [])
            runs.append(run.model_dump(mode="json"))
            self.store.save(RUNS_DOC, runs)

            state = self.store.load_state()
            if outcome != RunOutcome.FAILED:
                state["last_sync"] = run.finished_at.isoformat()
            if clean:
                cursors = state.setdefault("cursors", {})
                cursors[_PRIMARY] = max(
                    cursors.get(_PRIMARY, 0), tally.max_primary_revision
                )
                cursors[_SECONDARY] = max(
                    cursors.get(_SECONDARY, 0), tally.max_secondary_revision
                )
            self.store.save_state(state)

        self.events.record(
            "run_finished",
            f"Run #{run_id} {outcome.value}: {run.items_synced} synced, "
            f"{run.items_errored} errored, {run.conflicts_detected} "
            f"conflict(s)",
            level="info" if clean else "warning",
            run_id=run_id,
            outcome=outcome.value,
            duration_ms=round(run.duration_ms, 1),
        )
        return run

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def _primary_pass(
        self,
        run_id: int,
        scope: RunScope,
        state: dict,
        tally: _RunTally,
        deadline: float,
    ) -> None:
        cursor = (
            state.get("cursors", {}).get(_PRIMARY, 0)
            if scope == RunScope.CHANGED
            else 0
        )
        records = self.primary.list_changed_since(cursor)
        if scope == RunScope.PENDING:
            marks = state.get("marks", {})
            pending = set(state.get("pending", []))
            records = [
                r for r in records if r.id not in marks or r.id in pending
            ]
        logger.debug(
            "Primary pass: %d candidate(s) past revision %d",
            len(records),
            cursor,
        )

        for record in records:
            self._check_deadline(deadline)
            tally.max_primary_revision = max(
                tally.max_primary_revision, record.revision
            )
            tally.seen_primary.add(record.id)
            try:
                with self.store.record_lock(record.id):
                    # Listed state may predate a resolution; read again
                    record = self.primary.get(record.id) or record
                    mark = self._current_mark(record.id)
                    counterpart = self._find_secondary(record, mark)
                    if counterpart is not None:
                        tally.seen_secondary.add(counterpart.id)
                    tally.scanned += 1
                    self._reconcile(run_id, record, counterpart, mark, tally)
            except Exception as exc:
                self._record_error(run_id, record.id, exc, tally)

    def _secondary_pass(
        self,
        run_id: int,
        scope: RunScope,
        state: dict,
        tally: _RunTally,
        deadline: float,
    ) -> None:
        cursor = (
            state.get("cursors", {}).get(_SECONDARY, 0)
            if scope == RunScope.CHANGED
            else 0
        )
        records = self.secondary.list_changed_since(cursor)
        if scope == RunScope.PENDING:
            records = [
                r
                for r in records
                if r.external_id is None
                and self.store.record_for_secondary(state, r.id) is None
            ]
        logger.debug(
            "Secondary pass: %d candidate(s) past revision %d",
            len(records),
            cursor,
        )

        for record in records:
            self._check_deadline(deadline)
            tally.max_secondary_revision = max(
                tally.max_secondary_revision, record.revision
            )
            if record.id in tally.seen_secondary:
                continue
            tally.seen_secondary.add(record.id)
            record_id = record.external_id or self.store.record_for_secondary(
                state, record.id
            )
            try:
                counterpart = self._find_primary(record, record_id)
                if counterpart is not None:
                    if counterpart.id in tally.seen_primary:
                        continue
                    record_id = counterpart.id
                with self.store.record_lock(
                    self._record_id(counterpart, record)
                ):
                    record = self.secondary.get(record.id) or record
                    if counterpart is not None:
                        counterpart = (
                            self.primary.get(counterpart.id) or counterpart
                        )
                    mark = (
                        self._current_mark(record_id) if record_id else None
                    )
                    tally.scanned += 1
                    self._reconcile(run_id, counterpart, record, mark, tally)
            except Exception as exc:
                self._record_error(
                    run_id, record_id or record.id, exc, tally
                )

    # ------------------------------------------------------------------
    # Per-pair reconciliation
    # ------------------------------------------------------------------

    def _reconcile(
        self,
        run_id: int,
        primary: SyncableRecord | None,
        secondary: SyncableRecord | None,
        mark: dict | None,
        tally: _RunTally,
    ) -> None:
        """Classify one pair and act on it.  Mutates *tally*.

        The caller holds the record lock and passes records and mark read
        under it.
        """
        record_id = self._record_id(primary, secondary)
        pending = (
            record_id in tally.pending_conflicts
            and self.ledger.has_pending(record_id)
        )
        base = mark.get("revision") if mark else None
        classification = classify(primary, secondary, base)
        action = classification.action

        if pending:
            if classification.conflict is not None:
                self.ledger.refresh(classification.conflict)
            logger.debug(
                "Skipping %s: pending conflict awaits resolution", record_id
            )
            tally.skipped += 1
            return

        if action == SyncAction.CONFLICT:
            conflict_id = self.ledger.append(
                classification.conflict, run_id=run_id
            )
            tally.pending_conflicts.add(record_id)
            tally.conflicts += 1
            self.events.record(
                "conflict_detected",
                f"{classification.conflict.conflict_type.value} conflict "
                f"#{conflict_id} on {record_id}: {classification.reason}",
                level="warning",
                run_id=run_id,
                record_id=record_id,
                conflict_id=conflict_id,
            )
            return

        if action == SyncAction.SKIP:
            tally.skipped += 1
            if primary is not None and secondary is not None and (
                mark is None or mark.get("revision") != primary.revision
            ):
                self._commit(record_id, secondary.id, primary.revision)
            return

        outcome = self._write(action, primary, secondary, record_id)
        if outcome is None:
            # Deleted before it was ever mirrored
            tally.skipped += 1
            if primary is not None and mark is None:
                self._commit(record_id, primary.external_id, primary.revision)
            return

        secondary_id, revision = outcome
        tally.seen_secondary.add(secondary_id)
        self._commit(record_id, secondary_id, revision)
        tally.synced += 1
        self.events.record(
            "record_synced",
            f"{record_id}: {action.value} ({classification.reason})",
            level="debug",
            run_id=run_id,
            record_id=record_id,
            action=action.value,
            revision=revision,
        )

    def _write(
        self,
        action: SyncAction,
        primary: SyncableRecord | None,
        secondary: SyncableRecord | None,
        record_id: str,
    ) -> tuple[str, int] | None:
        """Carry out a non-conflicting decision.

        Returns:
            ``(secondary_id, shared_revision)`` after a write, or ``None``
            when the decision needed no write.
        """
        if action in (SyncAction.PUSH, SyncAction.CREATE_SECONDARY):
            secondary_id = (
                secondary.id
                if secondary is not None
                else primary.external_id or secondary_id_for(primary.id)
            )
            self._upsert(
                self.secondary,
                _mirror(primary, secondary_id, primary.id),
                record_id,
            )
            if primary.external_id != secondary_id:
                self._upsert(
                    self.primary,
                    primary.model_copy(update={"external_id": secondary_id}),
                    record_id,
                )
            return secondary_id, primary.revision

        if action in (SyncAction.PULL, SyncAction.CREATE_PRIMARY):
            self._upsert(
                self.primary,
                _mirror(secondary, record_id, secondary.id),
                record_id,
            )
            if secondary.external_id != record_id:
                self._upsert(
                    self.secondary,
                    secondary.model_copy(update={"external_id": record_id}),
                    record_id,
                )
            return secondary.id, secondary.revision

        if action == SyncAction.DELETE_SECONDARY:
            if secondary is None:
                return None
            self._call(
                lambda: self.secondary.delete(secondary.id, primary.revision),
                record_id,
            )
            return secondary.id, primary.revision

        if action == SyncAction.DELETE_PRIMARY:
            if primary is None:
                return None
            self._call(
                lambda: self.primary.delete(primary.id, secondary.revision),
                record_id,
            )
            return secondary.id, secondary.revision

        if action == SyncAction.RECONCILE:
            if secondary.revision > primary.revision:
                self._upsert(
                    self.primary,
                    primary.model_copy(
                        update={
                            "revision": secondary.revision,
                            "external_id": secondary.id,
                        }
                    ),
                    record_id,
                )
                return secondary.id, secondary.revision
            self._upsert(
                self.secondary,
                secondary.model_copy(
                    update={
                        "revision": primary.revision,
                        "external_id": primary.id,
                    }
                ),
                record_id,
            )
            return secondary.id, primary.revision

        raise ValueError(f"Unhandled sync action: {action}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _find_secondary(
        self, record: SyncableRecord, mark: dict | None
    ) -> SyncableRecord | None:
        secondary_id = record.external_id or (mark or {}).get("secondary_id")
        if secondary_id:
            found = self.secondary.get(secondary_id)
            if found is not None:
                return found
        found = self.secondary.get_by_external_id(record.id)
        if found is not None:
            return found
        # A write interrupted before the link was stored
        return self.secondary.get(secondary_id_for(record.id))

    def _find_primary(
        self, record: SyncableRecord, record_id: str | None
    ) -> SyncableRecord | None:
        if record_id:
            found = self.primary.get(record_id)
            if found is not None:
                return found
        found = self.primary.get_by_external_id(record.id)
        if found is not None:
            return found
        return self.primary.get(primary_id_for(record.id))

    @staticmethod
    def _record_id(
        primary: SyncableRecord | None, secondary: SyncableRecord | None
    ) -> str:
        if primary is not None:
            return primary.id
        return secondary.external_id or primary_id_for(secondary.id)

    def _upsert(
        self,
        adapter: RecordStoreAdapter,
        record: SyncableRecord,
        record_id: str,
    ) -> None:
        self._call(lambda: adapter.upsert(record), record_id)

    def _call(self, operation: Callable[[], Any], record_id: str) -> None:
        def on_retry(attempt: int, backoff: float, exc: Exception) -> None:
            self.events.record(
                "record_retry",
                f"{record_id}: attempt {attempt} failed, retrying in "
                f"{backoff:g}s: {exc}",
                level="warning",
                record_id=record_id,
                attempt=attempt,
            )

        call_with_retry(
            operation,
            record_id,
            self.retry,
            sleeper=self._sleeper,
            on_retry=on_retry,
        )

    def _check_deadline(self, deadline: float) -> None:
        if self._clock() >= deadline:
            raise RunTimeout(self.run_timeout_seconds)

    def _current_mark(self, record_id: str) -> dict | None:
        with self.store.lock:
            return self.store.get_mark(self.store.load_state(), record_id)

    def _commit(self, record_id: str, secondary_id: str | None, revision: int) -> None:
        """Persist the sync mark of one record."""
        with self.store.lock:
            state = self.store.load_state()
            self.store.update_mark(state, record_id, secondary_id, revision)
            pending = state.setdefault("pending", [])
            if record_id in pending:
                pending.remove(record_id)
            self.store.save_state(state)

    def _record_error(
        self,
        run_id: int,
        record_id: str,
        exc: Exception,
        tally: _RunTally,
    ) -> None:
        tally.errored += 1
        tally.errors.append(f"{record_id}: {exc}")
        logger.error("Error syncing %s: %s", record_id, exc)
        self.events.record(
            "record_error",
            f"{record_id}: {exc}",
            level="error",
            run_id=run_id,
            record_id=record_id,
        )
        with self.store.lock:
            state = self.store.load_state()
            pending = state.setdefault("pending", [])
            if record_id not in pending:
                pending.append(record_id)
                self.store.save_state(state)

    def _allocate_run_id(self) -> int:
        with self.store.lock:
            state = self.store.load_state()
            run_id = state.get("next_run_id", 1)
            state["next_run_id"] = run_id + 1
            self.store.save_state(state)
        return run_id


def _mirror(
    source: SyncableRecord, target_id: str, external_id: str
) -> SyncableRecord:
    """Copy *source* into the other store's identity space."""
    return SyncableRecord(
        id=target_id,
        external_id=external_id,
        revision=source.revision,
        payload=source.payload,
        deleted_at=source.deleted_at,
        updated_at=source.updated_at,
    )
