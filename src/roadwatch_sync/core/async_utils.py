"""Async utilities for bridging the blocking sync service to async MCP handlers."""

import asyncio
from typing import Any, Callable, TypeVar

T = TypeVar("T")


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Reconciliation runs, store probes and ledger writes are all blocking
    calls; MCP tool handlers wrap them with this helper so the stdio
    transport keeps serving other requests meanwhile.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        # In MCP tool handler:
        result = await run_sync(service.run_once, "changed")
    """
    return await asyncio.to_thread(func, *args, **kwargs)
