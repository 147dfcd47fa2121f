"""Error response builders and shared utilities for MCP tool handlers.

This module provides structured error responses with corrective actions
to help AI agents recover from errors without human intervention, plus
the translation of the engine's exception taxonomy into those responses.
"""

import mcp.types as types

from ...sync.errors import (
    AdapterUnavailable,
    AlreadyRunning,
    ConflictAlreadyResolved,
    ConflictNotFound,
    InvalidAutoSyncConfig,
    InvalidResolutionChoice,
    RecordWriteFailed,
    SyncError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (validation_error, not_found,
            already_running, already_resolved, unavailable, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Conflict #12 not found", "Use conflict_list to list conflicts.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def translate_sync_error(error: SyncError) -> types.CallToolResult:
    """Translate an engine exception to a structured error response.

    Args:
        error: Any ``SyncError`` raised by the service.

    Returns:
        CallToolResult with isError=True and corrective action
    """
    match error:
        case ConflictNotFound():
            return build_error_response(
                "not_found",
                str(error),
                "Use conflict_list to list existing conflict ids.",
            )
        case ConflictAlreadyResolved():
            return build_error_response(
                "already_resolved",
                str(error),
                "Use conflict_list with resolution='pending' to find "
                "conflicts that still need a decision.",
            )
        case AlreadyRunning():
            return build_error_response(
                "already_running",
                str(error),
                "Wait for the current run to finish (see sync_status), "
                "then retry.",
            )
        case AdapterUnavailable():
            return build_error_response(
                "unavailable",
                str(error),
                "Check store connectivity with sync_health, then retry.",
            )
        case RecordWriteFailed():
            return build_error_response(
                "unavailable",
                str(error),
                "The conflict is still pending. Retry once both stores "
                "accept writes.",
            )
        case InvalidResolutionChoice():
            return build_error_response(
                "validation_error",
                str(error),
                "Use choice 'left' (primary), 'right' (secondary) or "
                "'custom' with custom_data.",
            )
        case InvalidAutoSyncConfig():
            return build_error_response(
                "validation_error",
                str(error),
                "interval_minutes must be 1-1440; start_time/end_time "
                "are HH:MM, set together and different.",
            )
        case _:
            return build_error_response(
                "server_error",
                str(error),
                "Check the sync logs with sync_logs, then retry.",
            )
