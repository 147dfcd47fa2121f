"""MCP tool handlers for sync operations.

This package contains MCP tool implementations that wrap the blocking
``SyncService`` with async handlers, text/structured formatting, and
structured error responses.
"""

from .admin import ADMIN_SPECS, ADMIN_TOOLS
from .conflicts import CONFLICT_SPECS, CONFLICT_TOOLS
from .errors import build_error_response, translate_sync_error
from .registry import (
    SYNC_ADMIN,
    SYNC_RUN,
    SYNC_VIEW,
    ToolRegistry,
    ToolSpec,
    load_permissions_file,
)
from .sync import SYNC_SPECS, SYNC_TOOLS

ALL_SPECS: list[ToolSpec] = SYNC_SPECS + CONFLICT_SPECS + ADMIN_SPECS

__all__ = [
    "build_error_response",
    "translate_sync_error",
    # Registry
    "ToolSpec",
    "ToolRegistry",
    "load_permissions_file",
    "SYNC_VIEW",
    "SYNC_RUN",
    "SYNC_ADMIN",
    # Spec lists
    "ALL_SPECS",
    "SYNC_SPECS",
    "CONFLICT_SPECS",
    "ADMIN_SPECS",
    # Tool lists
    "SYNC_TOOLS",
    "CONFLICT_TOOLS",
    "ADMIN_TOOLS",
]
