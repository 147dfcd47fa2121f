"""ToolSpec and ToolRegistry for permission-based tool filtering.

This module provides a centralized registry for MCP tools that supports
filtering based on sync permissions, enabling operators to expose a
read-only surface (``SYNC_VIEW``) to some agents and the run/resolve
(``SYNC_RUN``) or configuration (``SYNC_ADMIN``) tools to others.

Key concepts:
- ToolSpec: Immutable dataclass linking a Tool definition, required permissions,
  and an async handler with standardized signature (service, args) -> CallToolResult.
- ToolRegistry: Filters specs by allowed permissions at construction time,
  then provides list_tools() and call_tool() dispatch with error translation.
- load_permissions_file: Reads a simple text file of permission names.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import mcp.types as types

from ...sync.errors import SyncError

if TYPE_CHECKING:
    from ...service import SyncService

logger = logging.getLogger(__name__)

SYNC_VIEW = "SYNC_VIEW"
SYNC_RUN = "SYNC_RUN"
SYNC_ADMIN = "SYNC_ADMIN"


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Immutable specification for a single MCP tool.

    Attributes:
        tool: The MCP Tool definition (name, description, inputSchema).
        permissions: Permissions required to use this tool.
            Empty frozenset means the tool is always available (no permission needed).
        handler: Async handler with signature (service, args) -> CallToolResult.
    """

    tool: types.Tool
    permissions: frozenset[str]
    handler: Callable[[SyncService, dict], Awaitable[types.CallToolResult]]


class ToolRegistry:
    """Registry of ToolSpecs with optional permission-based filtering.

    If allowed_permissions is None, all specs are included.
    Otherwise, a spec is included only if:
    - its permissions set is empty (always available), or
    - its permissions are a subset of allowed_permissions.
    """

    def __init__(
        self,
        specs: list[ToolSpec],
        allowed_permissions: frozenset[str] | None = None,
    ):
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            if (
                allowed_permissions is None
                or not spec.permissions
                or spec.permissions <= allowed_permissions
            ):
                self._specs[spec.tool.name] = spec

    def list_tools(self) -> list[types.Tool]:
        """Return list of types.Tool for all registered (permitted) specs."""
        return [spec.tool for spec in self._specs.values()]

    def tool_count(self) -> int:
        """Return number of registered tools."""
        return len(self._specs)

    async def call_tool(
        self,
        name: str,
        arguments: dict | None,
        service: SyncService,
    ) -> types.CallToolResult:
        """Dispatch tool call to registered handler.

        Provides centralized error handling for engine errors, validation
        errors, and unexpected exceptions, translating them into structured
        CallToolResult responses with corrective actions.

        Args:
            name: Tool name to invoke.
            arguments: Tool arguments (may be None).
            service: The running SyncService.

        Returns:
            CallToolResult from the handler.

        Raises:
            ValueError: If tool name is not registered (unknown or filtered out).
        """
        from .errors import build_error_response, translate_sync_error

        spec = self._specs.get(name)
        if spec is None:
            raise ValueError(f"Unknown tool: {name}")
        args = arguments or {}
        try:
            return await spec.handler(service, args)
        except SyncError as e:
            logger.warning("Sync error in %s: %s", name, e)
            return translate_sync_error(e)
        except ValueError as e:
            return build_error_response(
                "validation_error",
                str(e),
                "Check parameter values and retry.",
            )
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return build_error_response(
                "server_error",
                str(e),
                "Check the server log or retry later.",
            )


def load_permissions_file(path: str | Path) -> frozenset[str]:
    """Load permissions from a text file.

    Format: one permission per line, ``#`` for comments, blank lines ignored.

    Example file::

        # Read-only operators
        SYNC_VIEW

    Args:
        path: Path to the permissions file.

    Returns:
        Frozenset of permission strings.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file contains invalid permissions or is empty.
    """
    path = Path(path)
    permissions: set[str] = set()
    for line_num, line in enumerate(path.read_text().splitlines(), 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if not stripped.replace("_", "").isalpha() or not stripped.isupper():
            raise ValueError(
                f"Invalid permission '{stripped}' at line {line_num} in {path}. "
                "Expected UPPER_SNAKE_CASE (e.g., SYNC_VIEW)."
            )
        permissions.add(stripped)
    if not permissions:
        raise ValueError(
            f"No permissions found in {path}. File must contain at least one permission."
        )
    return frozenset(permissions)
