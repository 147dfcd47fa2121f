"""Divergence detection between a primary record and its secondary mirror.

``classify()`` is a pure function: it looks at the two sides of one
record (either may be absent) plus the last revision both sides agreed
on, and decides what the orchestrator should do.  Rules, in order:

1. One side absent, the other a tombstone: propagate the deletion.
2. One side absent, the other live: plain one-way create.
3. Both present, one tombstoned: a ``deletion`` conflict if the live
   side was modified after the tombstone, otherwise propagate the
   deletion.
4. Both live with different payloads: a one-sided change (only one
   revision moved past the shared base) propagates; anything else is a
   ``modification`` conflict, or a ``creation`` conflict when the two
   records share no lineage at all.
5. Identical payloads with different revisions: reconcile the revision
   markers silently.

When no conflict is raised the later revision wins and ties go to the
primary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .models import Conflict, ConflictType, SyncableRecord, SyncAction

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Classification:
    """Outcome of classifying one primary/secondary pair.

    Attributes:
        action: What the orchestrator should do.
        resolved: The winning record, when no conflict was raised.
        conflict: Unsaved conflict draft, when one was raised.
        reason: Short human-readable explanation for logs.
    """

    action: SyncAction
    resolved: SyncableRecord | None = None
    conflict: Conflict | None = None
    reason: str = ""


def classify(
    primary: SyncableRecord | None,
    secondary: SyncableRecord | None,
    base_revision: int | None = None,
) -> Classification:
    """Classify a primary/secondary pair.

    Args:
        primary: The record as held by the primary store.
        secondary: Its counterpart in the secondary store.
        base_revision: Last revision both sides converged at, if the pair
            was synced before.

    Returns:
        A ``Classification``.
    """
    if primary is None and secondary is None:
        return Classification(SyncAction.SKIP, reason="absent on both sides")

    # Rules 1-2: exactly one side present
    if secondary is None:
        if primary.is_tombstone:
            return Classification(
                SyncAction.DELETE_SECONDARY,
                resolved=primary,
                reason="deleted on primary, absent on secondary",
            )
        return Classification(
            SyncAction.CREATE_SECONDARY,
            resolved=primary,
            reason="new on primary",
        )
    if primary is None:
        if secondary.is_tombstone:
            return Classification(
                SyncAction.DELETE_PRIMARY,
                resolved=secondary,
                reason="deleted on secondary, absent on primary",
            )
        return Classification(
            SyncAction.CREATE_PRIMARY,
            resolved=secondary,
            reason="new on secondary",
        )

    # Rule 3: tombstones
    if primary.is_tombstone and secondary.is_tombstone:
        if primary.revision == secondary.revision:
            return Classification(
                SyncAction.SKIP, resolved=primary, reason="deleted on both"
            )
        return Classification(
            SyncAction.RECONCILE,
            resolved=_winner(primary, secondary),
            reason="deleted on both, revisions differ",
        )

    if primary.is_tombstone or secondary.is_tombstone:
        dead, live = (
            (primary, secondary)
            if primary.is_tombstone
            else (secondary, primary)
        )
        if live.updated_at > dead.deleted_at:
            return Classification(
                SyncAction.CONFLICT,
                conflict=_draft(ConflictType.DELETION, primary, secondary),
                reason="modified after delete",
            )
        action = (
            SyncAction.DELETE_SECONDARY
            if primary.is_tombstone
            else SyncAction.DELETE_PRIMARY
        )
        return Classification(
            action, resolved=dead, reason="delete propagates"
        )

    # Rule 5: same content
    if primary.payload == secondary.payload:
        if primary.revision == secondary.revision:
            return Classification(
                SyncAction.SKIP, resolved=primary, reason="in sync"
            )
        return Classification(
            SyncAction.RECONCILE,
            resolved=_winner(primary, secondary),
            reason="identical payload, revisions differ",
        )

    # Rule 4: different content
    if base_revision is not None:
        primary_changed = primary.revision > base_revision
        secondary_changed = secondary.revision > base_revision
        if primary_changed and not secondary_changed:
            return Classification(
                SyncAction.PUSH, resolved=primary, reason="changed on primary"
            )
        if secondary_changed and not primary_changed:
            return Classification(
                SyncAction.PULL,
                resolved=secondary,
                reason="changed on secondary",
            )
        return Classification(
            SyncAction.CONFLICT,
            conflict=_draft(ConflictType.MODIFICATION, primary, secondary),
            reason="changed on both sides",
        )

    if _linked(primary, secondary):
        return Classification(
            SyncAction.CONFLICT,
            conflict=_draft(ConflictType.MODIFICATION, primary, secondary),
            reason="linked records differ without a shared base",
        )

    # No lineage: independent creation needs evidence on both sides
    if primary.payload.is_empty:
        return Classification(
            SyncAction.PULL, resolved=secondary, reason="primary is empty"
        )
    if secondary.payload.is_empty:
        return Classification(
            SyncAction.PUSH, resolved=primary, reason="secondary is empty"
        )
    return Classification(
        SyncAction.CONFLICT,
        conflict=_draft(ConflictType.CREATION, primary, secondary),
        reason="created independently on both sides",
    )


def _winner(
    primary: SyncableRecord, secondary: SyncableRecord
) -> SyncableRecord:
    """Later revision wins, ties break toward the primary."""
    if secondary.revision > primary.revision:
        return secondary
    return primary


def _linked(primary: SyncableRecord, secondary: SyncableRecord) -> bool:
    """True when the primary already points at this secondary record."""
    return (
        primary.external_id is not None
        and primary.external_id == secondary.id
    )


def _draft(
    conflict_type: ConflictType,
    primary: SyncableRecord,
    secondary: SyncableRecord,
) -> Conflict:
    return Conflict(
        record_id=primary.id,
        secondary_id=secondary.id,
        conflict_type=conflict_type,
        left_payload=primary.payload,
        right_payload=secondary.payload,
        left_revision=primary.revision,
        right_revision=secondary.revision,
        left_deleted=primary.is_tombstone,
        right_deleted=secondary.is_tombstone,
    )
