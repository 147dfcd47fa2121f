"""Exception taxonomy for the reconciliation engine.

Two families:

* Errors that stop a run from starting (``AlreadyRunning``,
  ``AdapterUnavailable``) are raised to the caller of ``run_once``.
* Per-record errors (``RecordWriteFailed``, ``AdapterError``) are
  absorbed into ``SyncRun`` counters and only surface through telemetry.

Resolver and configuration errors reflect a caller mistake and are
raised directly.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all reconciliation errors."""


class AdapterError(SyncError):
    """A store adapter call failed (network, timeout, rejected write)."""

    def __init__(self, side: str, message: str) -> None:
        super().__init__(f"{side}: {message}")
        self.side = side


class AlreadyRunning(SyncError):
    """A reconciliation pass is already in flight."""

    def __init__(self) -> None:
        super().__init__("A synchronization run is already in progress")


class AdapterUnavailable(SyncError):
    """A connectivity probe failed before the run could start."""

    def __init__(self, sides: list[str]) -> None:
        super().__init__(
            f"Store(s) unreachable: {', '.join(sides)}"
        )
        self.sides = sides


class RecordWriteFailed(SyncError):
    """A record write still failed after all retry attempts."""

    def __init__(self, record_id: str, attempts: int, cause: str) -> None:
        super().__init__(
            f"Write of record {record_id} failed after {attempts} "
            f"attempt(s): {cause}"
        )
        self.record_id = record_id
        self.attempts = attempts


class RunTimeout(SyncError):
    """The wall-clock bound of a run was exceeded."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            f"Run exceeded wall-clock bound of {timeout_seconds:g}s"
        )
        self.timeout_seconds = timeout_seconds


class ConflictNotFound(SyncError):
    def __init__(self, conflict_id: int) -> None:
        super().__init__(f"Conflict #{conflict_id} not found")
        self.conflict_id = conflict_id


class ConflictAlreadyResolved(SyncError):
    def __init__(self, conflict_id: int) -> None:
        super().__init__(f"Conflict #{conflict_id} is already resolved")
        self.conflict_id = conflict_id


class InvalidResolutionChoice(SyncError, ValueError):
    """Unknown choice, or ``custom`` without a usable payload."""


class InvalidAutoSyncConfig(SyncError, ValueError):
    """Rejected auto-sync configuration change."""
