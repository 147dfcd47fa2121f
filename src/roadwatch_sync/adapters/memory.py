"""Dict-backed record store.

Used by the test-suite and by ``kind: memory`` adapter configs (local
demos, dry wiring of the MCP server).  Each store keeps its own logical
clock; native edits (``create``/``modify``/``remove``) bump it, while
``upsert`` stores the caller's revision verbatim the way a replica
would.

Failures can be injected to exercise retry and outage handling:

* ``online = False`` makes every call raise ``AdapterError`` and
  ``ping()`` report disconnected.
* ``fail_next_writes`` makes the next *n* writes raise.
* ``failing_ids`` makes writes of those record ids always raise.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time

from ..sync.errors import AdapterError
from ..sync.models import ReportPayload, SyncableRecord, utcnow
from .base import PingResult

logger = logging.getLogger(__name__)


class InMemoryRecordAdapter:
    """Thread-safe in-memory implementation of ``RecordStoreAdapter``.

    Args:
        name: Side name used in error messages (``primary``/``secondary``).
        id_prefix: Prefix for ids generated by ``create()``.
    """

    def __init__(self, name: str, id_prefix: str | None = None) -> None:
        self.name = name
        self._id_prefix = id_prefix or name[:3]
        self._records: dict[str, SyncableRecord] = {}
        self._clock = 0
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

        self.online = True
        self.fail_next_writes = 0
        self.failing_ids: set[str] = set()
        self.write_delay = 0.0
        self.write_count = 0

    # ------------------------------------------------------------------
    # Adapter protocol
    # ------------------------------------------------------------------

    def get(self, record_id: str) -> SyncableRecord | None:
        self._check_online()
        with self._lock:
            return self._records.get(record_id)

    def get_by_external_id(
        self, external_id: str
    ) -> SyncableRecord | None:
        self._check_online()
        with self._lock:
            for record in self._records.values():
                if record.external_id == external_id:
                    return record
        return None

    def list_changed_since(self, revision: int) -> list[SyncableRecord]:
        self._check_online()
        with self._lock:
            changed = [
                r for r in self._records.values() if r.revision > revision
            ]
        return sorted(changed, key=lambda r: (r.revision, r.id))

    def upsert(self, record: SyncableRecord) -> SyncableRecord:
        self._before_write(record.id)
        with self._lock:
            self._records[record.id] = record
            self._clock = max(self._clock, record.revision)
            self.write_count += 1
        return record

    def delete(
        self, record_id: str, revision: int | None = None
    ) -> SyncableRecord | None:
        self._before_write(record_id)
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                return None
            new_revision = (
                revision if revision is not None else self._clock + 1
            )
            tombstone = current.model_copy(
                update={
                    "revision": new_revision,
                    "deleted_at": current.deleted_at or utcnow(),
                    "updated_at": utcnow(),
                }
            )
            self._records[record_id] = tombstone
            self._clock = max(self._clock, new_revision)
            self.write_count += 1
            return tombstone

    def ping(self) -> PingResult:
        started = time.monotonic()
        if not self.online:
            return PingResult(connected=False, error=f"{self.name} offline")
        return PingResult(
            connected=True,
            latency_ms=(time.monotonic() - started) * 1000,
        )

    # ------------------------------------------------------------------
    # Native edits (what the web or field apps do on their own store)
    # ------------------------------------------------------------------

    def create(
        self,
        payload: ReportPayload,
        record_id: str | None = None,
        external_id: str | None = None,
    ) -> SyncableRecord:
        """Create a record at the next clock value."""
        with self._lock:
            self._clock += 1
            rid = record_id or f"{self._id_prefix}-{next(self._ids)}"
            record = SyncableRecord(
                id=rid,
                external_id=external_id,
                revision=self._clock,
                payload=payload,
            )
            self._records[rid] = record
            return record

    def modify(self, record_id: str, payload: ReportPayload) -> SyncableRecord:
        """Replace the payload of *record_id* and bump its revision."""
        with self._lock:
            current = self._records[record_id]
            self._clock += 1
            record = current.model_copy(
                update={
                    "payload": payload,
                    "revision": self._clock,
                    "updated_at": utcnow(),
                }
            )
            self._records[record_id] = record
            return record

    def remove(self, record_id: str) -> SyncableRecord:
        """Tombstone *record_id* as a native delete."""
        with self._lock:
            current = self._records[record_id]
            self._clock += 1
            record = current.model_copy(
                update={
                    "revision": self._clock,
                    "deleted_at": utcnow(),
                    "updated_at": utcnow(),
                }
            )
            self._records[record_id] = record
            return record

    def put(self, record: SyncableRecord) -> None:
        """Seed *record* verbatim without failure injection."""
        with self._lock:
            self._records[record.id] = record
            self._clock = max(self._clock, record.revision)

    def all(self) -> list[SyncableRecord]:
        with self._lock:
            return list(self._records.values())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_online(self) -> None:
        if not self.online:
            raise AdapterError(self.name, "store offline")

    def _before_write(self, record_id: str) -> None:
        self._check_online()
        if self.write_delay:
            time.sleep(self.write_delay)
        if record_id in self.failing_ids:
            raise AdapterError(self.name, f"write of {record_id} rejected")
        with self._lock:
            if self.fail_next_writes > 0:
                self.fail_next_writes -= 1
                raise AdapterError(
                    self.name, f"transient write failure on {record_id}"
                )
