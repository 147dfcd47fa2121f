"""Durable conflict ledger.

Conflicts live in ``conflicts.json`` as ``{"next_id": n, "conflicts":
[...]}``.  Entries are never deleted; resolution only flips their state.

Key design choices:

* **Idempotent append** -- at most one *pending* entry exists per
  record.  Appending a conflict for a record that already has one
  refreshes the stored payloads, revisions and type in place and
  returns the existing id.
* **Store lock** -- every read-modify-write cycle holds the state
  store's lock, so the ledger can be used from the orchestrator, the
  resolver and the control surface at the same time.
"""

from __future__ import annotations

import builtins
import logging

from .errors import ConflictAlreadyResolved, ConflictNotFound
from .models import (
    Conflict,
    ConflictFilter,
    Resolution,
    ResolutionChoice,
    ReportPayload,
    utcnow,
)
from .state import CONFLICTS_DOC, SyncStateStore

logger = logging.getLogger(__name__)

_REFRESHED_FIELDS = (
    "secondary_id",
    "conflict_type",
    "left_payload",
    "right_payload",
    "left_revision",
    "right_revision",
    "left_deleted",
    "right_deleted",
)


def _is_pending_for(raw: dict, record_id: str) -> bool:
    return (
        raw.get("resolution") == Resolution.PENDING.value
        and raw.get("record_id") == record_id
    )


class ConflictLedger:
    """Append, query and resolve conflicts.

    Args:
        store: State store holding ``conflicts.json``.
    """

    def __init__(self, store: SyncStateStore) -> None:
        self.store = store

    def append(self, conflict: Conflict, run_id: int | None = None) -> int:
        """Record *conflict*, refreshing an existing pending entry.

        Args:
            conflict: Conflict draft; its ``id`` is ignored.
            run_id: Run that detected it.

        Returns:
            The ledger id of the new or refreshed entry.
        """
        with self.store.lock:
            doc = self._load()
            for index, raw in enumerate(doc["conflicts"]):
                if not _is_pending_for(raw, conflict.record_id):
                    continue
                existing = Conflict.model_validate(raw)
                update = {
                    name: getattr(conflict, name)
                    for name in _REFRESHED_FIELDS
                }
                update["updated_at"] = utcnow()
                refreshed = existing.model_copy(update=update)
                doc["conflicts"][index] = refreshed.model_dump(mode="json")
                self._save(doc)
                logger.debug(
                    "Refreshed pending conflict #%d for record %s",
                    existing.id,
                    conflict.record_id,
                )
                return existing.id

            new_id = doc["next_id"]
            stored = conflict.model_copy(
                update={
                    "id": new_id,
                    "detected_at": utcnow(),
                    "detected_run_id": run_id,
                    "resolution": Resolution.PENDING,
                }
            )
            doc["conflicts"].append(stored.model_dump(mode="json"))
            doc["next_id"] = new_id + 1
            self._save(doc)
            logger.info(
                "Recorded %s conflict #%d for record %s",
                conflict.conflict_type.value,
                new_id,
                conflict.record_id,
            )
            return new_id

    def refresh(self, conflict: Conflict) -> int | None:
        """Refresh the pending entry for ``conflict.record_id`` if any.

        Unlike ``append`` this never creates an entry.

        Returns:
            The refreshed entry's id, or ``None`` when nothing is pending.
        """
        with self.store.lock:
            if not self.has_pending(conflict.record_id):
                return None
            return self.append(conflict)

    def list(self, filter: ConflictFilter | None = None) -> builtins.list[Conflict]:
        """Return conflicts matching *filter*, oldest first."""
        with self.store.lock:
            conflicts = [
                Conflict.model_validate(raw)
                for raw in self._load()["conflicts"]
            ]
        if filter is None:
            return conflicts
        if filter.resolution is not None:
            conflicts = [
                c for c in conflicts if c.resolution == filter.resolution
            ]
        if filter.conflict_type is not None:
            conflicts = [
                c for c in conflicts if c.conflict_type == filter.conflict_type
            ]
        if filter.record_id is not None:
            conflicts = [
                c for c in conflicts if c.record_id == filter.record_id
            ]
        if filter.limit is not None:
            conflicts = conflicts[: filter.limit]
        return conflicts

    def get(self, conflict_id: int) -> Conflict | None:
        with self.store.lock:
            for raw in self._load()["conflicts"]:
                if raw.get("id") == conflict_id:
                    return Conflict.model_validate(raw)
        return None

    def mark_resolved(
        self,
        conflict_id: int,
        choice: ResolutionChoice,
        resolved_by: str,
        resolved_payload: ReportPayload | None = None,
    ) -> Conflict:
        """Flip *conflict_id* to resolved.

        Raises:
            ConflictNotFound: No such conflict.
            ConflictAlreadyResolved: The conflict was resolved before.
        """
        with self.store.lock:
            doc = self._load()
            for index, raw in enumerate(doc["conflicts"]):
                if raw.get("id") != conflict_id:
                    continue
                existing = Conflict.model_validate(raw)
                if not existing.is_pending:
                    raise ConflictAlreadyResolved(conflict_id)
                now = utcnow()
                resolved = existing.model_copy(
                    update={
                        "resolution": Resolution.RESOLVED,
                        "resolution_choice": choice,
                        "resolved_by": resolved_by,
                        "resolved_at": now,
                        "resolved_payload": resolved_payload,
                        "updated_at": now,
                    }
                )
                doc["conflicts"][index] = resolved.model_dump(mode="json")
                self._save(doc)
                return resolved
        raise ConflictNotFound(conflict_id)

    # The pending queries below read raw entries and skip validation;
    # the ledger only grows, so they must not pay for resolved history.

    def has_pending(self, record_id: str) -> bool:
        with self.store.lock:
            return any(
                _is_pending_for(raw, record_id)
                for raw in self._load()["conflicts"]
            )

    def pending_record_ids(self) -> set[str]:
        with self.store.lock:
            return {
                raw["record_id"]
                for raw in self._load()["conflicts"]
                if raw.get("resolution") == Resolution.PENDING.value
            }

    def pending_count(self) -> int:
        with self.store.lock:
            return sum(
                1
                for raw in self._load()["conflicts"]
                if raw.get("resolution") == Resolution.PENDING.value
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _load(self) -> dict:
        doc = self.store.load(CONFLICTS_DOC)
        if doc is None:
            return {"next_id": 1, "conflicts": []}
        return doc

    def _save(self, doc: dict) -> None:
        self.store.save(CONFLICTS_DOC, doc)
