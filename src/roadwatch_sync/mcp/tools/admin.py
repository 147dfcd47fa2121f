"""MCP tool handlers for auto-sync configuration and log maintenance.

Defines six tools:

- ``auto_sync_get`` -- current scheduler configuration.
- ``auto_sync_configure`` -- enable/disable and change interval or window.
- ``sync_logs`` -- page through the durable sync log, newest first.
- ``sync_logs_export`` -- the whole log as JSON or CSV.
- ``sync_logs_cleanup`` -- prune run and log history by age.
- ``sync_reset`` -- clear run and log history.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...core.async_utils import run_sync
from ...sync.reporter import format_logs
from ...sync.telemetry import EXPORT_FORMATS
from .registry import SYNC_ADMIN, SYNC_VIEW, ToolSpec

if TYPE_CHECKING:
    from ...service import SyncService
    from ...sync.models import AutoSyncConfig


ADMIN_TOOLS: list[types.Tool] = [
    types.Tool(
        name="auto_sync_get",
        description="Show the auto-sync configuration and next scheduled run.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="auto_sync_configure",
        description=(
            "Change the auto-sync configuration. Only the given settings "
            "change; the rest keep their current values. Set start_time "
            "and end_time together (HH:MM) to restrict runs to a daily "
            "window, or both to null to remove it."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "interval_minutes": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": 1440,
                },
                "start_time": {
                    "type": ["string", "null"],
                    "description": "Window start, HH:MM local time",
                },
                "end_time": {
                    "type": ["string", "null"],
                    "description": "Window end, HH:MM local time",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="sync_logs",
        description="Page through sync log entries, newest first.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "default": 50,
                },
                "offset": {
                    "type": "integer",
                    "minimum": 0,
                    "default": 0,
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="sync_logs_export",
        description="Export every sync log entry as JSON or CSV text.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "format": {
                    "type": "string",
                    "enum": list(EXPORT_FORMATS),
                    "default": "json",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="sync_logs_cleanup",
        description=(
            "Delete run history and log entries older than N days "
            "(default: configured retention). Conflicts are kept."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "days": {"type": "integer", "minimum": 1},
            },
            "required": [],
        },
    ),
    types.Tool(
        name="sync_reset",
        description=(
            "Clear all run history and log entries. Conflicts and sync "
            "marks are kept. Warning: This cannot be undone."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
]


def _auto_sync_result(
    service: SyncService, config: AutoSyncConfig
) -> types.CallToolResult:
    next_run = service.scheduler.next_run_at if config.enabled else None
    window = (
        f"{config.start_time}-{config.end_time}" if config.has_window else "any time"
    )
    lines = [
        f"Auto-sync: {'enabled' if config.enabled else 'disabled'}",
        f"Interval: {config.interval_minutes} min",
        f"Window: {window}",
        f"Next run: {next_run.isoformat() if next_run else '-'}",
    ]
    structured = config.model_dump(mode="json")
    structured["next_run_at"] = next_run.isoformat() if next_run else None
    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent=structured,
    )


async def _handle_auto_sync_get(
    service: SyncService, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``auto_sync_get`` tool."""
    return _auto_sync_result(service, service.get_auto_sync_config())


async def _handle_auto_sync_configure(
    service: SyncService, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``auto_sync_configure`` tool."""
    if not args:
        raise ValueError(
            "Provide at least one of enabled, interval_minutes, "
            "start_time, end_time"
        )
    config = await run_sync(service.set_auto_sync_config, dict(args))
    return _auto_sync_result(service, config)


async def _handle_sync_logs(
    service: SyncService, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_logs`` tool."""
    limit = args.get("limit", 50)
    offset = args.get("offset", 0)
    entries = await run_sync(service.get_logs, limit, offset)
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_logs(entries))],
        structuredContent={
            "entries": [e.model_dump(mode="json") for e in entries],
            "count": len(entries),
        },
    )


async def _handle_sync_logs_export(
    service: SyncService, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_logs_export`` tool."""
    fmt = args.get("format") or "json"
    data = await run_sync(service.export_logs, fmt)
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=data.decode("utf-8"))],
        structuredContent={"format": fmt, "size": len(data)},
    )


async def _handle_sync_logs_cleanup(
    service: SyncService, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_logs_cleanup`` tool."""
    result = await run_sync(service.cleanup_logs, args.get("days"))
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text",
                text=f"Deleted {result['deleted_count']} history entries.",
            )
        ],
        structuredContent=result,
    )


async def _handle_sync_reset(
    service: SyncService, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_reset`` tool."""
    await run_sync(service.reset)
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text", text="Run history and sync logs cleared."
            )
        ],
        structuredContent={"reset": True},
    )


ADMIN_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=ADMIN_TOOLS[0],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_auto_sync_get,
    ),
    ToolSpec(
        tool=ADMIN_TOOLS[1],
        permissions=frozenset({SYNC_ADMIN}),
        handler=_handle_auto_sync_configure,
    ),
    ToolSpec(
        tool=ADMIN_TOOLS[2],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_sync_logs,
    ),
    ToolSpec(
        tool=ADMIN_TOOLS[3],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_sync_logs_export,
    ),
    ToolSpec(
        tool=ADMIN_TOOLS[4],
        permissions=frozenset({SYNC_ADMIN}),
        handler=_handle_sync_logs_cleanup,
    ),
    ToolSpec(
        tool=ADMIN_TOOLS[5],
        permissions=frozenset({SYNC_ADMIN}),
        handler=_handle_sync_reset,
    ),
]
