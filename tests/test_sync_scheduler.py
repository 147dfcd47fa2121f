"""Tests for AutoSyncScheduler -- gated ticks and timer lifecycle."""

from __future__ import annotations

import threading
from datetime import datetime
from unittest.mock import MagicMock

from roadwatch_sync.sync.errors import AdapterUnavailable, AlreadyRunning
from roadwatch_sync.sync.models import AutoSyncConfig
from roadwatch_sync.sync.scheduler import AutoSyncScheduler


def _scheduler(config: AutoSyncConfig, run=None, events=None):
    run = run or MagicMock(return_value="run")
    return AutoSyncScheduler(run, lambda: config, events=events), run


class TestTick:
    def test_disabled_is_noop(self):
        scheduler, run = _scheduler(AutoSyncConfig(enabled=False))
        assert scheduler.tick() is None
        run.assert_not_called()

    def test_enabled_without_window_runs(self):
        scheduler, run = _scheduler(AutoSyncConfig(enabled=True))
        assert scheduler.tick() == "run"
        run.assert_called_once()

    def test_outside_window_is_noop(self):
        config = AutoSyncConfig(
            enabled=True, start_time="08:00", end_time="18:00"
        )
        scheduler, run = _scheduler(config)

        assert scheduler.tick(datetime(2026, 3, 2, 19, 30)) is None
        run.assert_not_called()

    def test_inside_window_runs(self):
        config = AutoSyncConfig(
            enabled=True, start_time="08:00", end_time="18:00"
        )
        scheduler, run = _scheduler(config)

        assert scheduler.tick(datetime(2026, 3, 2, 8, 0)) == "run"

    def test_window_wrapping_midnight(self):
        config = AutoSyncConfig(
            enabled=True, start_time="22:00", end_time="06:00"
        )
        scheduler, run = _scheduler(config)

        assert scheduler.tick(datetime(2026, 3, 2, 23, 15)) == "run"
        assert scheduler.tick(datetime(2026, 3, 2, 5, 59)) == "run"
        assert scheduler.tick(datetime(2026, 3, 2, 6, 0)) is None
        assert run.call_count == 2

    def test_tick_during_run_is_dropped(self, events):
        run = MagicMock(side_effect=AlreadyRunning())
        scheduler, _ = _scheduler(
            AutoSyncConfig(enabled=True), run=run, events=events
        )

        assert scheduler.tick() is None
        assert events.entries()[-1].event == "tick_dropped"

    def test_unreachable_store_is_swallowed(self):
        run = MagicMock(side_effect=AdapterUnavailable(["secondary"]))
        scheduler, _ = _scheduler(AutoSyncConfig(enabled=True), run=run)
        assert scheduler.tick() is None

    def test_config_is_reread_each_tick(self):
        state = {"config": AutoSyncConfig(enabled=False)}
        run = MagicMock(return_value="run")
        scheduler = AutoSyncScheduler(run, lambda: state["config"])

        assert scheduler.tick() is None
        state["config"] = AutoSyncConfig(enabled=True)
        assert scheduler.tick() == "run"


class TestLifecycle:
    def test_start_and_stop(self):
        scheduler, _ = _scheduler(AutoSyncConfig(enabled=True))

        scheduler.start()
        try:
            assert scheduler.is_active
        finally:
            scheduler.stop(wait=2.0)

        assert not scheduler.is_active
        assert scheduler.next_run_at is None

    def test_next_run_at_while_active(self):
        scheduler, _ = _scheduler(
            AutoSyncConfig(enabled=True, interval_minutes=30)
        )
        scheduler.start()
        try:
            deadline = threading.Event()
            for _ in range(50):
                if scheduler.next_run_at is not None:
                    break
                deadline.wait(0.02)
            assert scheduler.next_run_at is not None
        finally:
            scheduler.stop(wait=2.0)

    def test_start_twice_keeps_one_thread(self):
        scheduler, _ = _scheduler(AutoSyncConfig(enabled=True))
        scheduler.start()
        try:
            first = scheduler._thread
            scheduler.start()
            assert scheduler._thread is first
        finally:
            scheduler.stop(wait=2.0)

    def test_loop_survives_crashing_run(self):
        stopped = threading.Event()
        calls = []

        def run():
            calls.append(1)
            if len(calls) == 1:
                raise OSError("disk full")
            stopped.set()

        scheduler, _ = _scheduler(AutoSyncConfig(enabled=True), run=run)
        never_woken = MagicMock()
        never_woken.wait.return_value = False

        scheduler._loop(stopped, never_woken)

        assert len(calls) == 2
