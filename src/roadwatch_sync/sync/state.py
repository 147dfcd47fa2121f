"""Sync state persistence layer.

Manages the JSON documents that make the engine survive a restart.
Everything lives in one ``state_dir``:

* ``sync_state.json`` -- per-record sync marks, revision cursors and the
  ids left pending by the last run.
* ``runs.json`` -- sealed ``SyncRun`` history.
* ``conflicts.json`` -- the conflict ledger.
* ``auto_sync.json`` -- persisted ``AutoSyncConfig``.
* ``logs.jsonl`` -- durable sync log, one JSON object per line.

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Dict-based documents** -- documents are plain ``dict``/``list``
  values; the ledger and telemetry own their semantics and persist once
  per mutation.
* **One lock** -- ``lock`` is a re-entrant lock that callers hold across
  read-modify-write cycles.
* **Record locks** -- ``record_lock()`` hands out one of a fixed set of
  locks per record id.  The orchestrator and the resolver both hold it
  from reading a record to committing its mark.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import zlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

STATE_DOC = "sync_state"
RUNS_DOC = "runs"
CONFLICTS_DOC = "conflicts"
AUTO_SYNC_DOC = "auto_sync"
LOGS_FILE = "logs.jsonl"

_RECORD_LOCK_STRIPES = 64


def _empty_state() -> dict:
    return {
        "version": 1,
        "last_sync": None,
        "cursors": {"primary": 0, "secondary": 0},
        "marks": {},
        "pending": [],
    }


class SyncStateStore:
    """Load, save and query persisted reconciliation state.

    Args:
        state_dir: Directory holding the state documents.  Created on
            first write.
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = Path(state_dir)
        self.lock = threading.RLock()
        self._record_locks = tuple(
            threading.Lock() for _ in range(_RECORD_LOCK_STRIPES)
        )

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    def record_lock(self, record_id: str) -> threading.Lock:
        """Return the lock serialising work on *record_id*.

        Not re-entrant.  Distinct records may share a lock, so never hold
        two at once.
        """
        index = zlib.crc32(record_id.encode("utf-8")) % _RECORD_LOCK_STRIPES
        return self._record_locks[index]

    # ------------------------------------------------------------------
    # Generic documents
    # ------------------------------------------------------------------

    def load(self, name: str, default: Any = None) -> Any:
        """Load document *name*, returning *default* when absent."""
        path = self._doc_path(name)
        if not path.exists():
            return default
        with open(path, encoding="utf-8") as fh:
            return json.load(fh)

    def save(self, name: str, data: Any) -> None:
        """Persist document *name* atomically.

        Writes to a temporary file in the same directory then atomically
        replaces the target.  Creates ``state_dir`` if it does not exist.
        """
        self._state_dir.mkdir(parents=True, exist_ok=True)
        target = self._doc_path(name)
        self._atomic_write(target, json.dumps(data, indent=2, default=str))

    # ------------------------------------------------------------------
    # Sync state document
    # ------------------------------------------------------------------

    def load_state(self) -> dict:
        """Return the sync state document, or a fresh one."""
        state = self.load(STATE_DOC)
        if state is None:
            return _empty_state()
        return state

    def save_state(self, state: dict) -> None:
        self.save(STATE_DOC, state)

    def get_mark(self, state: dict, record_id: str) -> dict | None:
        """Return the sync mark for *record_id*, or ``None`` if absent."""
        return state.get("marks", {}).get(record_id)

    def update_mark(
        self,
        state: dict,
        record_id: str,
        secondary_id: str | None,
        revision: int,
    ) -> None:
        """Record that *record_id* converged at *revision*.

        Mutates *state* in place.
        """
        state.setdefault("marks", {})[record_id] = {
            "secondary_id": secondary_id,
            "revision": revision,
            "synced_at": datetime.now(timezone.utc).isoformat(),
        }

    def record_for_secondary(
        self, state: dict, secondary_id: str
    ) -> str | None:
        """Reverse lookup: primary id whose mark points at *secondary_id*."""
        for record_id, mark in state.get("marks", {}).items():
            if mark.get("secondary_id") == secondary_id:
                return record_id
        return None

    # ------------------------------------------------------------------
    # Append-only log
    # ------------------------------------------------------------------

    def append_log_line(self, entry: dict) -> None:
        """Append one JSON object to ``logs.jsonl``."""
        self._state_dir.mkdir(parents=True, exist_ok=True)
        line = json.dumps(entry, ensure_ascii=False, default=str)
        with open(self._log_path(), "a", encoding="utf-8") as fh:
            fh.write(line + "\n")

    def read_log_lines(self) -> list[dict]:
        """Return every log entry in append order.

        Lines that fail to parse (e.g. a torn final write) are skipped
        with a warning.
        """
        path = self._log_path()
        if not path.exists():
            return []
        entries: list[dict] = []
        with open(path, encoding="utf-8") as fh:
            for line_num, line in enumerate(fh, 1):
                stripped = line.strip()
                if not stripped:
                    continue
                try:
                    entries.append(json.loads(stripped))
                except json.JSONDecodeError:
                    logger.warning(
                        "Skipping unreadable log line %d in %s",
                        line_num,
                        path,
                    )
        return entries

    def rewrite_log_lines(self, entries: list[dict]) -> None:
        """Atomically replace ``logs.jsonl`` with *entries*."""
        self._state_dir.mkdir(parents=True, exist_ok=True)
        content = "".join(
            json.dumps(e, ensure_ascii=False, default=str) + "\n"
            for e in entries
        )
        self._atomic_write(self._log_path(), content)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _atomic_write(self, target: Path, content: str) -> None:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
            os.replace(tmp_path, target)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def _doc_path(self, name: str) -> Path:
        return self._state_dir / f"{name}.json"

    def _log_path(self) -> Path:
        return self._state_dir / LOGS_FILE
