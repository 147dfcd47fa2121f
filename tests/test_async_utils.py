"""
Tests for async_utils module.

Covers run_sync, the bridge MCP handlers use to call the blocking service.
"""

import asyncio
import threading

import pytest

from roadwatch_sync.core.async_utils import run_sync


def _sync_add(a: int, b: int) -> int:
    """Simple sync function for testing."""
    return a + b


async def test_run_sync_calls_function():
    """run_sync delegates to asyncio.to_thread with correct args."""
    result = await run_sync(_sync_add, 3, 4)
    assert result == 7


async def test_run_sync_passes_kwargs():
    """run_sync forwards keyword arguments."""

    def _kw_func(*, scope: str) -> str:
        return f"scope={scope}"

    result = await run_sync(_kw_func, scope="changed")
    assert result == "scope=changed"


async def test_run_sync_runs_off_the_event_loop_thread():
    """The blocking call runs in a worker thread."""
    loop_thread = threading.get_ident()
    worker_thread = await run_sync(threading.get_ident)
    assert worker_thread != loop_thread


async def test_run_sync_propagates_exceptions():
    """Exceptions raised in the worker reach the awaiting coroutine."""

    def _boom():
        raise RuntimeError("store offline")

    with pytest.raises(RuntimeError, match="store offline"):
        await run_sync(_boom)


async def test_loop_stays_responsive():
    """Other coroutines progress while a blocking call is in flight."""
    release = threading.Event()
    ticks = []

    async def _ticker():
        for _ in range(3):
            ticks.append(1)
            await asyncio.sleep(0)
        release.set()

    blocking = asyncio.ensure_future(run_sync(release.wait, 5))
    await _ticker()

    assert await blocking is True
    assert len(ticks) == 3
