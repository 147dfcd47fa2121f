"""Bidirectional reconciliation engine.

Public API for keeping the primary report store and the secondary
(field app) store convergent.

Architecture
------------
The engine uses **lineage-based reconciliation**: for every record it
remembers the revision both sides last agreed on (the *sync mark*).  A
side whose revision moved past the mark changed since the last sync; if
both moved, the divergence is recorded as a conflict for an operator to
resolve instead of being guessed at.

Modules:

- ``engine``     -- ``SyncOrchestrator``: one reconciliation pass.
- ``detector``   -- ``classify``: pure divergence classification.
- ``ledger``     -- ``ConflictLedger``: durable conflict log.
- ``resolver``   -- ``Resolver``: applies operator decisions.
- ``scheduler``  -- ``AutoSyncScheduler``: optional timer.
- ``telemetry``  -- ``SyncTelemetry``: health, statistics, log queries.
- ``state``      -- ``SyncStateStore``: JSON documents on disk.
- ``events``     -- ``SyncEventLog``: durable event log.
- ``merger``     -- field-level merge and payload diff.
- ``retry``      -- ``RetryPolicy`` and bounded write retries.
- ``models``     -- data contracts.
- ``errors``     -- exception taxonomy.
- ``reporter``   -- human-readable and JSON formatting.

Usage example
-------------
::

    from pathlib import Path
    from roadwatch_sync.adapters import InMemoryRecordAdapter
    from roadwatch_sync.sync import (
        ConflictLedger,
        SyncEventLog,
        SyncOrchestrator,
        SyncStateStore,
        format_run_report,
    )

    store = SyncStateStore(Path(".roadwatch_sync/state"))
    orchestrator = SyncOrchestrator(
        primary=InMemoryRecordAdapter("primary"),
        secondary=InMemoryRecordAdapter("secondary"),
        store=store,
        ledger=ConflictLedger(store),
        events=SyncEventLog(store),
    )

    run = orchestrator.run_once()
    print(format_run_report(run))
"""

from .detector import Classification, classify
from .engine import SyncOrchestrator
from .errors import (
    AdapterError,
    AdapterUnavailable,
    AlreadyRunning,
    ConflictAlreadyResolved,
    ConflictNotFound,
    InvalidAutoSyncConfig,
    InvalidResolutionChoice,
    RecordWriteFailed,
    RunTimeout,
    SyncError,
)
from .events import SyncEventLog
from .ledger import ConflictLedger
from .merger import MergeSuggestion, generate_diff, suggest_merge
from .models import (
    AutoSyncConfig,
    Conflict,
    ConflictFilter,
    ConflictType,
    ReportPayload,
    Resolution,
    ResolutionChoice,
    RunOutcome,
    RunScope,
    SyncableRecord,
    SyncAction,
    SyncExecuteResult,
    SyncRun,
)
from .reporter import format_conflict, format_run_report, result_to_json
from .resolver import Resolver, parse_choice
from .retry import RetryPolicy
from .scheduler import AutoSyncScheduler
from .state import SyncStateStore
from .telemetry import SyncTelemetry

__all__ = [
    "AdapterError",
    "AdapterUnavailable",
    "AlreadyRunning",
    "AutoSyncConfig",
    "AutoSyncScheduler",
    "Classification",
    "Conflict",
    "ConflictAlreadyResolved",
    "ConflictFilter",
    "ConflictLedger",
    "ConflictNotFound",
    "ConflictType",
    "InvalidAutoSyncConfig",
    "InvalidResolutionChoice",
    "MergeSuggestion",
    "RecordWriteFailed",
    "ReportPayload",
    "Resolution",
    "ResolutionChoice",
    "Resolver",
    "RetryPolicy",
    "RunOutcome",
    "RunScope",
    "RunTimeout",
    "SyncAction",
    "SyncError",
    "SyncEventLog",
    "SyncExecuteResult",
    "SyncOrchestrator",
    "SyncRun",
    "SyncStateStore",
    "SyncTelemetry",
    "SyncableRecord",
    "classify",
    "format_conflict",
    "format_run_report",
    "generate_diff",
    "parse_choice",
    "result_to_json",
    "suggest_merge",
]
