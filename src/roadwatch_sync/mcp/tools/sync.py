"""MCP tool handlers for running and observing reconciliation.

Defines four tools:

- ``sync_run`` -- run one reconciliation pass now.
- ``sync_status`` -- scheduler, store and pending-work snapshot.
- ``sync_health`` -- live store probes plus last-run errors.
- ``sync_statistics`` -- aggregate run and conflict history.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...core.async_utils import run_sync
from ...sync.models import RunScope
from ...sync.reporter import (
    format_health,
    format_run_report,
    format_statistics,
    format_status,
    result_to_json,
)
from .registry import SYNC_RUN, SYNC_VIEW, ToolSpec

if TYPE_CHECKING:
    from ...service import SyncService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="sync_run",
        description=(
            "Run one reconciliation pass between the primary and secondary "
            "report stores. Non-conflicting changes are copied across; "
            "divergent records are recorded as conflicts for review. "
            "Fails with already_running if a pass is in progress."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "scope": {
                    "type": "string",
                    "enum": [s.value for s in RunScope],
                    "default": RunScope.FULL.value,
                    "description": (
                        "full: every record; changed: records modified "
                        "since the last successful run; pending: records "
                        "never synced or left pending by an error"
                    ),
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="sync_status",
        description=(
            "Show auto-sync state, store connectivity, last/next sync time, "
            "pending records and pending conflicts."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="sync_health",
        description=(
            "Probe both stores and report ok, degraded (one store down or "
            "errors in the last run) or error (no store reachable)."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="sync_statistics",
        description=(
            "Aggregate run outcomes, durations, items synced and conflict "
            "counts over the last N days."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "days": {
                    "type": "integer",
                    "minimum": 1,
                    "default": 7,
                    "description": "Window size in days (default: 7)",
                },
            },
            "required": [],
        },
    ),
]


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


async def _handle_sync_run(
    service: SyncService, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_run`` tool."""
    scope = args.get("scope") or RunScope.FULL.value
    result = await run_sync(service.run_once, scope)
    text = format_run_report(result.run) if result.run else result.message
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=result_to_json(result),
    )


async def _handle_sync_status(
    service: SyncService, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_status`` tool."""
    status = await run_sync(service.get_status)
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_status(status))],
        structuredContent=status.model_dump(mode="json"),
    )


async def _handle_sync_health(
    service: SyncService, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_health`` tool."""
    health = await run_sync(service.get_health)
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_health(health))],
        structuredContent=health.model_dump(mode="json"),
    )


async def _handle_sync_statistics(
    service: SyncService, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_statistics`` tool."""
    days = args.get("days", 7)
    if not isinstance(days, int) or isinstance(days, bool):
        raise ValueError("days must be an integer")
    stats = await run_sync(service.get_statistics, days)
    return types.CallToolResult(
        content=[
            types.TextContent(type="text", text=format_statistics(stats))
        ],
        structuredContent=stats.model_dump(mode="json"),
    )


SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=SYNC_TOOLS[0],
        permissions=frozenset({SYNC_RUN}),
        handler=_handle_sync_run,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[1],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_sync_status,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[2],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_sync_health,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[3],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_sync_statistics,
    ),
]
