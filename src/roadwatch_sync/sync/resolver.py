"""Operator-driven conflict resolution.

``Resolver.resolve()`` consumes one pending ledger entry:

1. Validates the request (conflict exists, still pending, choice known,
   custom payload well-formed).
2. Writes the chosen payload to **both** stores at a new shared revision
   (one above every revision known for the record), or propagates the
   deletion when the chosen side was a tombstone.
3. Updates the record's sync mark so the next run sees both sides in
   step.
4. Marks the ledger entry resolved.

Steps 2-4 hold the state store's record lock, which the orchestrator
also holds while it reconciles the same record.

If a write still fails after retries the entry stays pending and
``RecordWriteFailed`` reaches the caller.

Choices are ``left``/``right``/``custom``.  ``primary``/``postgres`` and
``secondary``/``firebase`` are accepted as aliases of ``left`` and
``right``.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Callable

from pydantic import ValidationError

from .errors import (
    ConflictAlreadyResolved,
    ConflictNotFound,
    InvalidResolutionChoice,
)
from .identity import secondary_id_for
from .models import (
    Conflict,
    ReportPayload,
    ResolutionChoice,
    SyncableRecord,
    utcnow,
)
from .retry import RetryPolicy, call_with_retry

if TYPE_CHECKING:
    from ..adapters.base import RecordStoreAdapter
    from .events import SyncEventLog
    from .ledger import ConflictLedger
    from .state import SyncStateStore

logger = logging.getLogger(__name__)

_CHOICE_ALIASES: dict[str, ResolutionChoice] = {
    "left": ResolutionChoice.LEFT,
    "primary": ResolutionChoice.LEFT,
    "postgres": ResolutionChoice.LEFT,
    "right": ResolutionChoice.RIGHT,
    "secondary": ResolutionChoice.RIGHT,
    "firebase": ResolutionChoice.RIGHT,
    "custom": ResolutionChoice.CUSTOM,
}

_CANONICAL = tuple(c.value for c in ResolutionChoice)

# Canonical names first, then the aliases
CHOICES: tuple[str, ...] = _CANONICAL + tuple(
    name for name in _CHOICE_ALIASES if name not in _CANONICAL
)


def parse_choice(choice: str | ResolutionChoice) -> ResolutionChoice:
    """Map a choice or one of its aliases to ``ResolutionChoice``.

    Raises:
        InvalidResolutionChoice: If *choice* is not recognised.
    """
    if isinstance(choice, ResolutionChoice):
        return choice
    parsed = _CHOICE_ALIASES.get(str(choice).strip().lower())
    if parsed is None:
        raise InvalidResolutionChoice(
            f"Unknown resolution choice '{choice}'. "
            f"Valid choices: {sorted(_CHOICE_ALIASES)}"
        )
    return parsed


def parse_custom_payload(
    custom_payload: ReportPayload | dict[str, Any] | None,
) -> ReportPayload:
    """Validate a ``custom`` resolution payload.

    Raises:
        InvalidResolutionChoice: If the payload is missing or invalid.
    """
    if custom_payload is None:
        raise InvalidResolutionChoice(
            "Choice 'custom' requires a custom payload"
        )
    if isinstance(custom_payload, ReportPayload):
        return custom_payload
    try:
        return ReportPayload.model_validate(custom_payload)
    except ValidationError as exc:
        raise InvalidResolutionChoice(
            f"Invalid custom payload: {exc.error_count()} error(s): "
            + "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            )
        ) from exc


class Resolver:
    """Apply operator decisions to pending conflicts.

    Args:
        primary: Primary store adapter.
        secondary: Secondary store adapter.
        ledger: Conflict ledger.
        store: State store holding sync marks.
        events: Durable event log.
        retry: Write retry policy.
        sleeper: Injected ``time.sleep`` replacement for backoff.
    """

    def __init__(
        self,
        primary: RecordStoreAdapter,
        secondary: RecordStoreAdapter,
        ledger: ConflictLedger,
        store: SyncStateStore,
        events: SyncEventLog | None = None,
        retry: RetryPolicy | None = None,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        self.primary = primary
        self.secondary = secondary
        self.ledger = ledger
        self.store = store
        self.events = events
        self.retry = retry or RetryPolicy()
        self._sleeper = sleeper

    def resolve(
        self,
        conflict_id: int,
        choice: str | ResolutionChoice,
        custom_payload: ReportPayload | dict[str, Any] | None = None,
        resolved_by: str = "operator",
    ) -> Conflict:
        """Resolve *conflict_id* in favour of *choice*.

        Args:
            conflict_id: Ledger id.
            choice: ``left``, ``right``, ``custom`` or an alias.
            custom_payload: Payload for ``custom``.
            resolved_by: Operator identity recorded on the entry.

        Returns:
            The resolved ``Conflict``.

        Raises:
            ConflictNotFound: No such conflict.
            ConflictAlreadyResolved: The conflict was resolved before.
            InvalidResolutionChoice: Unknown choice or bad custom payload.
            RecordWriteFailed: A store write failed after retries.
        """
        conflict = self.ledger.get(conflict_id)
        if conflict is None:
            raise ConflictNotFound(conflict_id)

        with self.store.record_lock(conflict.record_id):
            # Reload under the lock
            conflict = self.ledger.get(conflict_id)
            if not conflict.is_pending:
                raise ConflictAlreadyResolved(conflict_id)

            parsed = parse_choice(choice)
            if parsed == ResolutionChoice.CUSTOM:
                payload = parse_custom_payload(custom_payload)
                delete = False
            elif parsed == ResolutionChoice.LEFT:
                payload = conflict.left_payload
                delete = conflict.left_deleted
            else:
                payload = conflict.right_payload
                delete = conflict.right_deleted

            revision = self._apply(conflict, payload, delete)
            resolved = self.ledger.mark_resolved(
                conflict_id,
                parsed,
                resolved_by,
                resolved_payload=None if delete else payload,
            )

        logger.info(
            "Resolved conflict #%d (%s) with '%s' by %s",
            conflict_id,
            conflict.record_id,
            parsed.value,
            resolved_by,
        )
        if self.events is not None:
            self.events.record(
                "conflict_resolved",
                f"Conflict #{conflict_id} resolved with '{parsed.value}'",
                record_id=conflict.record_id,
                conflict_id=conflict_id,
                choice=parsed.value,
                resolved_by=resolved_by,
                revision=revision,
                deleted=delete,
            )
        return resolved

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _apply(
        self,
        conflict: Conflict,
        payload: ReportPayload | None,
        delete: bool,
    ) -> int:
        """Write the decision to both stores; return the shared revision."""
        record_id = conflict.record_id
        secondary_id = conflict.secondary_id or secondary_id_for(record_id)

        current_primary = self.primary.get(record_id)
        current_secondary = self.secondary.get(secondary_id)
        known = [
            conflict.left_revision or 0,
            conflict.right_revision or 0,
            current_primary.revision if current_primary else 0,
            current_secondary.revision if current_secondary else 0,
        ]
        revision = max(known) + 1

        if delete:
            if current_primary is not None:
                call_with_retry(
                    lambda: self.primary.delete(record_id, revision),
                    record_id,
                    self.retry,
                    self._sleeper,
                )
            if current_secondary is not None:
                call_with_retry(
                    lambda: self.secondary.delete(secondary_id, revision),
                    record_id,
                    self.retry,
                    self._sleeper,
                )
        else:
            now = utcnow()
            body = payload or ReportPayload()
            primary_record = SyncableRecord(
                id=record_id,
                external_id=secondary_id,
                revision=revision,
                payload=body,
                updated_at=now,
            )
            secondary_record = SyncableRecord(
                id=secondary_id,
                external_id=record_id,
                revision=revision,
                payload=body,
                updated_at=now,
            )
            call_with_retry(
                lambda: self.primary.upsert(primary_record),
                record_id,
                self.retry,
                self._sleeper,
            )
            call_with_retry(
                lambda: self.secondary.upsert(secondary_record),
                record_id,
                self.retry,
                self._sleeper,
            )

        with self.store.lock:
            state = self.store.load_state()
            self.store.update_mark(state, record_id, secondary_id, revision)
            pending = state.setdefault("pending", [])
            if record_id in pending:
                pending.remove(record_id)
            self.store.save_state(state)
        return revision
