"""Control surface over the reconciliation engine.

``SyncService`` wires the store adapters, state store, ledger, resolver,
orchestrator, scheduler and telemetry together from a ``Config`` and
exposes the operations used by both the MCP tools and the CLI.

Key design choices:

* **One service per process** -- the MCP lifespan and the CLI each build
  a single instance; every component shares its state store and lock.
* **Auto-sync config has an owner** -- it is loaded once (persisted value
  first, YAML ``auto_sync`` section otherwise), mutated only through
  ``set_auto_sync*`` and persisted on every change.
* **Cheap polling** -- ``get_status`` and ``get_health`` only read
  persisted documents and probe the stores; they never wait for a run.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable

from pydantic import ValidationError

from .adapters import PRIMARY, SECONDARY, RecordStoreAdapter, build_adapter
from .config import Config
from .sync.errors import ConflictNotFound, InvalidAutoSyncConfig
from .sync.events import SyncEventLog
from .sync.engine import SyncOrchestrator
from .sync.ledger import ConflictLedger
from .sync.merger import MergeSuggestion, suggest_merge
from .sync.models import (
    AutoSyncConfig,
    Conflict,
    ConflictFilter,
    HealthStatus,
    LogEntry,
    ReportPayload,
    RunOutcome,
    RunScope,
    SyncExecuteResult,
    SyncStatistics,
    SyncStatus,
)
from .sync.resolver import Resolver
from .sync.retry import RetryPolicy
from .sync.scheduler import AutoSyncScheduler
from .sync.state import AUTO_SYNC_DOC, SyncStateStore
from .sync.telemetry import SyncTelemetry

logger = logging.getLogger(__name__)

_AUTO_SYNC_FIELDS = frozenset(AutoSyncConfig.model_fields)


class SyncService:
    """Facade used by the MCP server and the CLI.

    Args:
        config: Runtime configuration.
        primary: Adapter override for the primary store.
        secondary: Adapter override for the secondary store.
        sleeper: Injected ``time.sleep`` replacement for retry backoff.
        clock: Injected monotonic clock for the run time bound.
        local_now: Local wall clock for the auto-sync window.
    """

    def __init__(
        self,
        config: Config,
        primary: RecordStoreAdapter | None = None,
        secondary: RecordStoreAdapter | None = None,
        sleeper: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        local_now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.primary = primary or build_adapter(PRIMARY, config.primary)
        self.secondary = secondary or build_adapter(
            SECONDARY, config.secondary
        )

        settings = config.sync
        retry = RetryPolicy(
            max_attempts=settings.max_attempts,
            initial_backoff_seconds=settings.initial_backoff_seconds,
            backoff_multiplier=settings.backoff_multiplier,
        )

        self.store = SyncStateStore(config.state_dir)
        self.events = SyncEventLog(self.store)
        self.ledger = ConflictLedger(self.store)
        self.orchestrator = SyncOrchestrator(
            self.primary,
            self.secondary,
            self.store,
            self.ledger,
            self.events,
            retry=retry,
            run_timeout_seconds=settings.run_timeout_seconds,
            sleeper=sleeper,
            clock=clock,
        )
        self.resolver = Resolver(
            self.primary,
            self.secondary,
            self.ledger,
            self.store,
            events=self.events,
            retry=retry,
            sleeper=sleeper,
        )
        self.telemetry = SyncTelemetry(
            self.primary,
            self.secondary,
            self.store,
            self.ledger,
            self.events,
            probe_timeout=settings.probe_timeout_seconds,
        )
        self._auto_sync = self._load_auto_sync()
        self.scheduler = AutoSyncScheduler(
            self.orchestrator.run_once,
            self.get_auto_sync_config,
            events=self.events,
            local_now=local_now,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the scheduler if auto-sync is enabled."""
        if self._auto_sync.enabled:
            self.scheduler.start()

    def shutdown(self, wait: float | None = 5.0) -> None:
        """Stop the scheduler; an in-flight run is left to finish."""
        self.scheduler.stop(wait=wait)

    # ------------------------------------------------------------------
    # Runs and status
    # ------------------------------------------------------------------

    def run_once(self, scope: RunScope | str | None = None) -> SyncExecuteResult:
        """Run one reconciliation pass now.

        Raises:
            AlreadyRunning: A run is in progress.
            AdapterUnavailable: A store failed its connectivity probe.
            ValueError: Unknown scope.
        """
        run = self.orchestrator.run_once(scope)
        message = (
            f"Sync {run.outcome.value}: {run.items_synced} synced, "
            f"{run.conflicts_detected} conflict(s), "
            f"{run.items_errored} error(s)"
        )
        if run.timed_out:
            message += " (timed out)"
        return SyncExecuteResult(
            success=run.outcome == RunOutcome.SUCCESS,
            message=message,
            synced_count=run.items_synced,
            error_count=run.items_errored,
            errors=run.errors,
            timestamp=run.finished_at,
            run=run,
        )

    def get_status(self) -> SyncStatus:
        primary, secondary = self.telemetry.probe()
        with self.store.lock:
            state = self.store.load_state()
        last_run = self.telemetry.last_run()
        last_sync = state.get("last_sync")
        return SyncStatus(
            enabled=self._auto_sync.enabled,
            running=self.orchestrator.is_running,
            last_sync=datetime.fromisoformat(last_sync) if last_sync else None,
            next_sync=(
                self.scheduler.next_run_at if self._auto_sync.enabled else None
            ),
            pending_count=len(state.get("pending", [])),
            synced_count=last_run.items_synced if last_run else 0,
            error_count=last_run.items_errored if last_run else 0,
            pending_conflicts=self.ledger.pending_count(),
            primary_status="connected" if primary.connected else "disconnected",
            secondary_status=(
                "connected" if secondary.connected else "disconnected"
            ),
        )

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def list_conflicts(
        self, filter: ConflictFilter | dict[str, Any] | None = None
    ) -> list[Conflict]:
        """List ledger entries.

        Raises:
            ValueError: If *filter* is malformed.
        """
        if isinstance(filter, dict):
            filter = ConflictFilter.model_validate(filter)
        return self.ledger.list(filter)

    def get_conflict(self, conflict_id: int) -> Conflict:
        conflict = self.ledger.get(conflict_id)
        if conflict is None:
            raise ConflictNotFound(conflict_id)
        return conflict

    def suggest_merge(self, conflict_id: int) -> MergeSuggestion:
        return suggest_merge(self.get_conflict(conflict_id))

    def resolve_conflict(
        self,
        conflict_id: int,
        choice: str,
        custom_data: ReportPayload | dict[str, Any] | None = None,
        resolved_by: str = "operator",
    ) -> Conflict:
        return self.resolver.resolve(
            conflict_id,
            choice,
            custom_payload=custom_data,
            resolved_by=resolved_by,
        )

    # ------------------------------------------------------------------
    # Auto-sync configuration
    # ------------------------------------------------------------------

    def get_auto_sync_config(self) -> AutoSyncConfig:
        return self._auto_sync

    def set_auto_sync(self, enabled: bool) -> AutoSyncConfig:
        """Turn the scheduler on or off."""
        return self.set_auto_sync_config({"enabled": enabled})

    def set_auto_sync_config(self, changes: dict[str, Any]) -> AutoSyncConfig:
        """Apply a partial auto-sync configuration change.

        Args:
            changes: Any of ``enabled``, ``interval_minutes``,
                ``start_time``, ``end_time``.

        Returns:
            The new configuration.

        Raises:
            InvalidAutoSyncConfig: Unknown key or invalid value.  The
                current configuration is left untouched.
        """
        unknown = set(changes) - _AUTO_SYNC_FIELDS
        if unknown:
            raise InvalidAutoSyncConfig(
                f"Unknown auto-sync setting(s): {sorted(unknown)}. "
                f"Valid settings: {sorted(_AUTO_SYNC_FIELDS)}"
            )
        previous = self._auto_sync
        try:
            updated = AutoSyncConfig.model_validate(
                {**previous.model_dump(), **changes}
            )
        except ValidationError as exc:
            raise InvalidAutoSyncConfig(
                "; ".join(
                    f"{'.'.join(str(p) for p in err['loc']) or 'config'}: "
                    f"{err['msg']}"
                    for err in exc.errors()
                )
            ) from exc

        with self.store.lock:
            self.store.save(AUTO_SYNC_DOC, updated.model_dump(mode="json"))
            self._auto_sync = updated

        if updated.enabled and not previous.enabled:
            self.scheduler.start()
        elif previous.enabled and not updated.enabled:
            self.scheduler.stop()

        self.events.record(
            "auto_sync_configured",
            f"Auto-sync {'enabled' if updated.enabled else 'disabled'}, "
            f"every {updated.interval_minutes} min",
            **updated.model_dump(mode="json"),
        )
        return updated

    def _load_auto_sync(self) -> AutoSyncConfig:
        with self.store.lock:
            persisted = self.store.load(AUTO_SYNC_DOC)
        if persisted is None:
            return self.config.auto_sync
        try:
            return AutoSyncConfig.model_validate(persisted)
        except ValidationError as exc:
            logger.warning(
                "Ignoring invalid persisted auto-sync config: %s", exc
            )
            return self.config.auto_sync

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def get_statistics(self, days: int = 7) -> SyncStatistics:
        return self.telemetry.statistics(days)

    def get_health(self) -> HealthStatus:
        return self.telemetry.health()

    def get_logs(self, limit: int = 50, offset: int = 0) -> list[LogEntry]:
        return self.telemetry.logs(limit, offset)

    def export_logs(self, fmt: str = "json") -> bytes:
        return self.telemetry.export_logs(fmt)

    def cleanup_logs(self, days: int | None = None) -> dict[str, int]:
        """Prune run and log history older than *days* (default: retention)."""
        retention = days if days is not None else self.config.sync.retention_days
        return {"deleted_count": self.telemetry.cleanup(retention)}

    def reset(self) -> None:
        """Clear run and log history; conflicts and sync marks survive."""
        self.telemetry.reset()
