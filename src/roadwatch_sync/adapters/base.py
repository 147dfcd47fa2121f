"""Record store adapter contract.

Both the primary and the secondary store are reached through the same
protocol so the orchestrator, resolver and telemetry never know which
technology sits behind a side.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..sync.models import SyncableRecord

PRIMARY = "primary"
SECONDARY = "secondary"


@dataclass(frozen=True, slots=True)
class PingResult:
    """Outcome of a connectivity probe.

    Attributes:
        connected: Whether the store answered.
        latency_ms: Round-trip time of the probe, when it answered.
        error: Failure description, when it did not.
    """

    connected: bool
    latency_ms: float | None = None
    error: str | None = None


class RecordStoreAdapter(Protocol):
    """Protocol that both store adapters must satisfy.

    Every method may raise ``AdapterError``.  Reads return ``None`` for
    records the store does not hold.
    """

    name: str

    def get(self, record_id: str) -> SyncableRecord | None:
        ...  # pragma: no cover

    def get_by_external_id(
        self, external_id: str
    ) -> SyncableRecord | None:
        ...  # pragma: no cover

    def list_changed_since(self, revision: int) -> list[SyncableRecord]:
        """Return records whose revision is greater than *revision*."""
        ...  # pragma: no cover

    def upsert(self, record: SyncableRecord) -> SyncableRecord:
        """Store *record* verbatim, including its revision."""
        ...  # pragma: no cover

    def delete(
        self, record_id: str, revision: int | None = None
    ) -> SyncableRecord | None:
        """Tombstone *record_id*, at *revision* when given."""
        ...  # pragma: no cover

    def ping(self) -> PingResult:
        ...  # pragma: no cover
