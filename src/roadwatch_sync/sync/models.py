"""Pydantic models for the reconciliation engine.

Defines the data contracts shared across the sync modules:

- ``ReportPayload``: tagged, schema-validated report content.
- ``SyncableRecord``: one record as held by a store adapter.
- ``SyncAction``: what a classification asks the orchestrator to do.
- ``Conflict``: a persisted divergence and its resolution state.
- ``SyncRun``: the sealed outcome of one reconciliation pass.
- ``AutoSyncConfig``: scheduler configuration.
- ``SyncStatus``, ``HealthStatus``, ``SyncStatistics``, ``LogEntry``,
  ``SyncExecuteResult``: read models for the control surface.

Models are frozen; updates go through ``model_copy(update=...)``.
"""

from __future__ import annotations

import re
from datetime import datetime, time, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Read a naive datetime as UTC; aware values pass through."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SyncAction(str, Enum):
    """Possible outcomes of classifying a primary/secondary pair."""

    SKIP = "skip"
    PUSH = "push"
    PULL = "pull"
    CREATE_SECONDARY = "create_secondary"
    CREATE_PRIMARY = "create_primary"
    DELETE_SECONDARY = "delete_secondary"
    DELETE_PRIMARY = "delete_primary"
    RECONCILE = "reconcile"
    CONFLICT = "conflict"


class ReportStatus(str, Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ConflictType(str, Enum):
    CREATION = "creation"
    MODIFICATION = "modification"
    DELETION = "deletion"


class Resolution(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class ResolutionChoice(str, Enum):
    """Which side wins a conflict.

    ``left`` is the primary store, ``right`` the secondary store.
    """

    LEFT = "left"
    RIGHT = "right"
    CUSTOM = "custom"


class RunOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class RunScope(str, Enum):
    """Record subset a reconciliation pass looks at."""

    FULL = "full"
    PENDING = "pending"
    CHANGED = "changed"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class ReportPayload(BaseModel):
    """Content of a road-damage report as carried by both stores.

    Attributes:
        kind: Payload tag; always ``"report"``.
        description: Free-text description of the damage.
        latitude: WGS84 latitude.
        longitude: WGS84 longitude.
        surface_m2: Damaged surface in square metres.
        budget: Estimated repair budget.
        level: Damage level from 1 (minor) to 10 (severe).
        status: Repair status.
        company: Contractor in charge of the repair.
        reported_by: Display name of the reporter.
        reported_at: When the report was filed.
        attributes: Extra scalar fields the stores carry.
    """

    kind: Literal["report"] = "report"
    description: str = ""
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    surface_m2: float | None = Field(default=None, ge=0)
    budget: float | None = Field(default=None, ge=0)
    level: int | None = Field(default=None, ge=1, le=10)
    status: ReportStatus = ReportStatus.NEW
    company: str | None = None
    reported_by: str | None = None
    reported_at: datetime | None = None
    attributes: dict[str, str | int | float | bool | None] = Field(
        default_factory=dict
    )

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def is_empty(self) -> bool:
        """True when no field differs from its default."""
        return self == ReportPayload()


class SyncableRecord(BaseModel):
    """One record as held by a store adapter.

    ``id`` is the identity in the store holding the record and
    ``external_id`` the identity of its counterpart in the other store.

    Attributes:
        id: Identity in the owning store.
        external_id: Counterpart identity, ``None`` until first sync.
        revision: Monotonic per-store revision.
        payload: Report content.
        deleted_at: Tombstone timestamp, ``None`` for live records.
        updated_at: Last modification time.
    """

    id: str = Field(min_length=1)
    external_id: str | None = None
    revision: int = Field(default=1, ge=0)
    payload: ReportPayload = Field(default_factory=ReportPayload)
    deleted_at: datetime | None = None
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}

    @field_validator("deleted_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @property
    def is_tombstone(self) -> bool:
        return self.deleted_at is not None


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


class Conflict(BaseModel):
    """A detected divergence owned by the conflict ledger.

    ``left_*`` fields describe the primary side, ``right_*`` the
    secondary side, as they were when the conflict was last refreshed.
    """

    id: int = 0
    record_id: str
    secondary_id: str | None = None
    conflict_type: ConflictType
    left_payload: ReportPayload | None = None
    right_payload: ReportPayload | None = None
    left_revision: int | None = None
    right_revision: int | None = None
    left_deleted: bool = False
    right_deleted: bool = False
    detected_at: datetime = Field(default_factory=utcnow)
    detected_run_id: int | None = None
    updated_at: datetime | None = None
    resolution: Resolution = Resolution.PENDING
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_choice: ResolutionChoice | None = None
    resolved_payload: ReportPayload | None = None

    model_config = {"frozen": True}

    @field_validator("detected_at", "updated_at", "resolved_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @property
    def is_pending(self) -> bool:
        return self.resolution == Resolution.PENDING


class ConflictFilter(BaseModel):
    """Optional filters for listing ledger entries."""

    resolution: Resolution | None = None
    conflict_type: ConflictType | None = None
    record_id: str | None = None
    limit: int | None = Field(default=None, ge=1)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


class SyncRun(BaseModel):
    """Sealed outcome of one reconciliation pass."""

    id: int
    scope: RunScope = RunScope.FULL
    started_at: datetime
    finished_at: datetime
    outcome: RunOutcome
    items_scanned: int = 0
    items_synced: int = 0
    items_errored: int = 0
    items_skipped: int = 0
    conflicts_detected: int = 0
    errors: list[str] = []
    timed_out: bool = False

    model_config = {"frozen": True}

    @property
    def duration_ms(self) -> float:
        return (self.finished_at - self.started_at).total_seconds() * 1000


class SyncExecuteResult(BaseModel):
    """What ``run_once`` reports back to the control surface."""

    success: bool
    message: str
    synced_count: int = 0
    error_count: int = 0
    errors: list[str] = []
    timestamp: datetime = Field(default_factory=utcnow)
    run: SyncRun | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Auto-sync configuration
# ---------------------------------------------------------------------------


class AutoSyncConfig(BaseModel):
    """Scheduler configuration.

    Attributes:
        enabled: Whether the timer is running.
        interval_minutes: Minutes between ticks (1-1440).
        start_time: Optional ``HH:MM`` start of the daily window.
        end_time: Optional ``HH:MM`` end of the daily window.  A window
            whose end is before its start wraps midnight.
    """

    enabled: bool = False
    interval_minutes: int = Field(default=15, ge=1, le=1440)
    start_time: str | None = None
    end_time: str | None = None

    model_config = {"frozen": True}

    @field_validator("start_time", "end_time")
    @classmethod
    def _check_hhmm(cls, value: str | None) -> str | None:
        if value is None:
            return None
        if not _HHMM.match(value):
            raise ValueError(f"'{value}' is not a HH:MM time")
        return value

    @model_validator(mode="after")
    def _check_window(self) -> AutoSyncConfig:
        if (self.start_time is None) != (self.end_time is None):
            raise ValueError(
                "start_time and end_time must be set together"
            )
        if self.start_time is not None and self.start_time == self.end_time:
            raise ValueError("start_time and end_time must differ")
        return self

    @property
    def has_window(self) -> bool:
        return self.start_time is not None

    def window_contains(self, moment: time) -> bool:
        """Return ``True`` if *moment* falls inside the daily window.

        Always ``True`` when no window is configured.  The window is
        inclusive of its start and exclusive of its end.
        """
        if self.start_time is None or self.end_time is None:
            return True
        start = time.fromisoformat(self.start_time)
        end = time.fromisoformat(self.end_time)
        current = moment.replace(second=0, microsecond=0, tzinfo=None)
        if start < end:
            return start <= current < end
        # Window wraps midnight
        return current >= start or current < end


# ---------------------------------------------------------------------------
# Telemetry read models
# ---------------------------------------------------------------------------


class AdapterHealth(BaseModel):
    connected: bool
    response_time: float | None = None
    error: str | None = None

    model_config = {"frozen": True}


class HealthStatus(BaseModel):
    """Live health derived from adapter probes and the last run."""

    status: Literal["ok", "degraded", "error"]
    primary: AdapterHealth
    secondary: AdapterHealth
    last_run_errors: int = 0
    timestamp: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


class SyncStatus(BaseModel):
    """Snapshot returned by ``get_status``."""

    enabled: bool
    running: bool = False
    last_sync: datetime | None = None
    next_sync: datetime | None = None
    pending_count: int = 0
    synced_count: int = 0
    error_count: int = 0
    pending_conflicts: int = 0
    primary_status: Literal["connected", "disconnected", "error"]
    secondary_status: Literal["connected", "disconnected", "error"]

    model_config = {"frozen": True}


class SyncStatistics(BaseModel):
    """Aggregate over run and conflict history in a day window."""

    days: int
    total_syncs: int = 0
    successful_syncs: int = 0
    partial_syncs: int = 0
    failed_syncs: int = 0
    average_duration_ms: float = 0.0
    last_sync_duration_ms: float | None = None
    total_items_synced: int = 0
    conflicts_detected: int = 0
    conflicts_resolved: int = 0

    model_config = {"frozen": True}


class LogEntry(BaseModel):
    """One durable sync log line."""

    id: int
    timestamp: datetime = Field(default_factory=utcnow)
    level: Literal["debug", "info", "warning", "error"] = "info"
    event: str
    message: str
    run_id: int | None = None
    record_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}
