"""Optional timer that triggers reconciliation runs.

The scheduler is a daemon thread waiting on a ``threading.Event`` for
``interval_minutes`` between ticks.  Each tick re-reads the current
``AutoSyncConfig``, so changes take effect on the next tick without
moving the one already scheduled.  A tick is a no-op when auto-sync is
disabled or the local time falls outside the daily window.  A tick
that lands while a run is in flight is dropped, never queued.

``tick()`` is public so the control surface and the tests can drive one
gated attempt synchronously.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable

from .errors import AdapterUnavailable, AlreadyRunning, SyncError
from .models import AutoSyncConfig, SyncRun, utcnow

if TYPE_CHECKING:
    from .events import SyncEventLog

logger = logging.getLogger(__name__)


class AutoSyncScheduler:
    """Periodic trigger for ``SyncOrchestrator.run_once``.

    Args:
        run: Callable starting one run (normally ``run_once``).
        config_provider: Returns the current ``AutoSyncConfig``.
        events: Durable event log for dropped ticks.
        local_now: Local wall clock used for the daily window.
    """

    def __init__(
        self,
        run: Callable[[], SyncRun],
        config_provider: Callable[[], AutoSyncConfig],
        events: SyncEventLog | None = None,
        local_now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._run = run
        self._config_provider = config_provider
        self._events = events
        self._local_now = local_now
        self._thread: threading.Thread | None = None
        self._wake = threading.Event()
        self._stopped = threading.Event()
        self._next_run_at: datetime | None = None
        self._lock = threading.Lock()

    @property
    def is_active(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def next_run_at(self) -> datetime | None:
        """When the timer fires next, ``None`` when it is not running."""
        with self._lock:
            return self._next_run_at if self.is_active else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the timer thread.  No-op if already running."""
        if self.is_active:
            return
        # Fresh events so a thread still winding down keeps its own stop
        self._stopped = threading.Event()
        self._wake = threading.Event()
        self._thread = threading.Thread(
            target=self._loop,
            args=(self._stopped, self._wake),
            name="roadwatch-auto-sync",
            daemon=True,
        )
        self._thread.start()
        logger.info("Auto-sync scheduler started")

    def stop(self, wait: float | None = None) -> None:
        """Cancel the pending timer.

        An in-flight run finishes on its own; pass *wait* to join the
        thread for at most that many seconds.
        """
        self._stopped.set()
        self._wake.set()
        thread = self._thread
        if wait is not None and thread is not None and thread.is_alive():
            thread.join(timeout=wait)
        self._thread = None
        with self._lock:
            self._next_run_at = None
        logger.info("Auto-sync scheduler stopped")

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def tick(self, now: datetime | None = None) -> SyncRun | None:
        """Run one gated attempt.

        Args:
            now: Local time to test against the window (defaults to now).

        Returns:
            The sealed run, or ``None`` when the tick was a no-op or was
            dropped.
        """
        config = self._config_provider()
        if not config.enabled:
            logger.debug("Tick ignored: auto-sync disabled")
            return None
        moment = now or self._local_now()
        if not config.window_contains(moment.time()):
            logger.debug(
                "Tick ignored: %s outside window %s-%s",
                moment.strftime("%H:%M"),
                config.start_time,
                config.end_time,
            )
            return None
        try:
            return self._run()
        except AlreadyRunning:
            logger.info("Tick dropped: a run is already in progress")
            if self._events is not None:
                self._events.record(
                    "tick_dropped",
                    "Scheduled run skipped: a run is already in progress",
                )
            return None
        except AdapterUnavailable as exc:
            logger.warning("Scheduled run could not start: %s", exc)
            return None
        except SyncError as exc:
            logger.error("Scheduled run failed: %s", exc)
            return None

    def _loop(self, stopped: threading.Event, wake: threading.Event) -> None:
        while not stopped.is_set():
            interval = timedelta(
                minutes=self._config_provider().interval_minutes
            )
            with self._lock:
                self._next_run_at = utcnow() + interval
            woke = wake.wait(interval.total_seconds())
            if stopped.is_set():
                break
            if woke:
                wake.clear()
                continue
            try:
                self.tick()
            except Exception:
                logger.exception("Scheduled run crashed; timer keeps going")
