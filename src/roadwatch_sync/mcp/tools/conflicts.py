"""MCP tool handlers for the conflict ledger.

Defines three tools:

- ``conflict_list`` -- list ledger entries with optional filters.
- ``conflict_get`` -- show one conflict with payload diff and merge hint.
- ``conflict_resolve`` -- apply an operator decision to a pending conflict.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...core.async_utils import run_sync
from ...sync.models import ConflictType, Resolution
from ...sync.reporter import format_conflict, format_conflict_list
from ...sync.resolver import CHOICES
from .errors import build_error_response
from .registry import SYNC_RUN, SYNC_VIEW, ToolSpec

if TYPE_CHECKING:
    from ...service import SyncService


CONFLICT_TOOLS: list[types.Tool] = [
    types.Tool(
        name="conflict_list",
        description=(
            "List conflicts detected by reconciliation, oldest first. "
            "Filter by resolution (pending/resolved), conflict_type "
            "(creation/modification/deletion) or record_id."
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
                "resolution": {
                    "type": "string",
                    "enum": [r.value for r in Resolution],
                    "description": "Only entries with this resolution",
                },
                "conflict_type": {
                    "type": "string",
                    "enum": [t.value for t in ConflictType],
                    "description": "Only entries of this type",
                },
                "record_id": {
                    "type": "string",
                    "description": "Only entries for this primary record id",
                },
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Maximum number of entries",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="conflict_get",
        description=(
            "Show one conflict: both revisions, a unified diff of the "
            "primary and secondary payloads and, while pending, a "
            "suggested field-level merge usable as custom_data."
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
                "conflict_id": {
                    "type": "integer",
                    "description": "Conflict id (required)",
                },
            },
            "required": ["conflict_id"],
        },
    ),
    types.Tool(
        name="conflict_resolve",
        description=(
            "Resolve a pending conflict. choice 'left' keeps the primary "
            "version, 'right' the secondary version, 'custom' writes "
            "custom_data to both stores. A resolved conflict cannot be "
            "resolved again."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=False,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "conflict_id": {
                    "type": "integer",
                    "description": "Conflict id (required)",
                },
                "choice": {
                    "type": "string",
                    "enum": list(CHOICES),
                    "description": (
                        "Winning side (required). primary/postgres and "
                        "secondary/firebase are aliases of left and right"
                    ),
                },
                "custom_data": {
                    "type": "object",
                    "description": (
                        "Report payload written to both stores when "
                        "choice is 'custom'"
                    ),
                },
                "resolved_by": {
                    "type": "string",
                    "default": "mcp",
                    "description": "Operator identity recorded on the entry",
                },
            },
            "required": ["conflict_id", "choice"],
        },
    ),
]


def _conflict_id(args: dict[str, Any]) -> int:
    conflict_id = args.get("conflict_id")
    if isinstance(conflict_id, bool) or not isinstance(conflict_id, int):
        raise ValueError("conflict_id is required and must be an integer")
    return conflict_id


async def _handle_conflict_list(
    service: SyncService, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``conflict_list`` tool."""
    filters = {
        key: args[key]
        for key in ("resolution", "conflict_type", "record_id", "limit")
        if args.get(key) is not None
    }
    conflicts = await run_sync(service.list_conflicts, filters)
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text", text=format_conflict_list(conflicts)
            )
        ],
        structuredContent={
            "conflicts": [c.model_dump(mode="json") for c in conflicts],
            "count": len(conflicts),
        },
    )


async def _handle_conflict_get(
    service: SyncService, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``conflict_get`` tool."""
    conflict = await run_sync(service.get_conflict, _conflict_id(args))
    structured = conflict.model_dump(mode="json")
    if conflict.is_pending:
        suggestion = await run_sync(service.suggest_merge, conflict.id)
        structured["suggested_merge"] = {
            "payload": suggestion.payload.model_dump(mode="json"),
            "contested": list(suggestion.contested),
        }
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_conflict(conflict))],
        structuredContent=structured,
    )


async def _handle_conflict_resolve(
    service: SyncService, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``conflict_resolve`` tool."""
    conflict_id = _conflict_id(args)
    choice = args.get("choice")
    if not choice:
        return build_error_response(
            "validation_error",
            "choice is required",
            "Provide choice 'left', 'right' or 'custom'.",
        )
    resolved = await run_sync(
        service.resolve_conflict,
        conflict_id,
        choice,
        args.get("custom_data"),
        args.get("resolved_by") or "mcp",
    )
    text = (
        f"Conflict #{resolved.id} on {resolved.record_id} resolved with "
        f"'{resolved.resolution_choice.value}' by {resolved.resolved_by}."
    )
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=resolved.model_dump(mode="json"),
    )


CONFLICT_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=CONFLICT_TOOLS[0],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_conflict_list,
    ),
    ToolSpec(
        tool=CONFLICT_TOOLS[1],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_conflict_get,
    ),
    ToolSpec(
        tool=CONFLICT_TOOLS[2],
        permissions=frozenset({SYNC_RUN}),
        handler=_handle_conflict_resolve,
    ),
]
