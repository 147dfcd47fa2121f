"""Durable sync event log.

Every notable step of a run or a resolution is appended to
``logs.jsonl`` as a ``LogEntry`` and mirrored to the Python logger, so
operators get the same story from ``get_logs`` and from the log file.
"""

from __future__ import annotations

import logging
from typing import Any

from .models import LogEntry
from .state import SyncStateStore

logger = logging.getLogger(__name__)

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class SyncEventLog:
    """Append-only writer for ``LogEntry`` rows.

    Args:
        store: State store owning ``logs.jsonl``.
    """

    def __init__(self, store: SyncStateStore) -> None:
        self.store = store
        self._next_id: int | None = None

    def record(
        self,
        event: str,
        message: str,
        level: str = "info",
        run_id: int | None = None,
        record_id: str | None = None,
        **details: Any,
    ) -> LogEntry:
        """Append one entry and mirror it to the Python logger.

        Args:
            event: Machine name, e.g. ``record_synced``.
            message: Human-readable summary.
            level: ``debug``, ``info``, ``warning`` or ``error``.
            run_id: Run the event belongs to.
            record_id: Primary record the event is about.
            **details: Extra JSON-serialisable context.

        Returns:
            The stored entry.
        """
        logger.log(
            _LEVELS.get(level, logging.INFO),
            "sync_event=%s %s",
            event,
            message,
        )
        with self.store.lock:
            entry = LogEntry(
                id=self._allocate_id(),
                level=level,
                event=event,
                message=message,
                run_id=run_id,
                record_id=record_id,
                details=details,
            )
            self.store.append_log_line(entry.model_dump(mode="json"))
        return entry

    def entries(self) -> list[LogEntry]:
        """Every stored entry, oldest first."""
        with self.store.lock:
            raw = self.store.read_log_lines()
        entries: list[LogEntry] = []
        for item in raw:
            try:
                entries.append(LogEntry.model_validate(item))
            except ValueError:
                logger.warning("Skipping malformed log entry: %r", item)
        return entries

    def _allocate_id(self) -> int:
        if self._next_id is None:
            existing = self.store.read_log_lines()
            self._next_id = (
                max((int(e.get("id", 0)) for e in existing), default=0) + 1
            )
        allocated = self._next_id
        self._next_id += 1
        return allocated
