"""MCP Server exposing the sync control surface using stdio transport.

This module implements the Model Context Protocol server that lets AI
agents run reconciliation, review and resolve conflicts, and manage the
auto-sync schedule.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..core.async_utils import run_sync
from ..logger import setup_logging
from ..service import SyncService
from ..sync.reporter import format_health
from ..version import check_version_consistency
from .lifespan import server_lifespan
from .tools import (
    ALL_SPECS,
    ToolRegistry,
    build_error_response,
    load_permissions_file,
)
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

server = Server("roadwatch-sync")

# Global service instance (initialized in lifespan)
_service: SyncService | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available, no permission required)
# ---------------------------------------------------------------------------


async def _handle_ping(
    service: SyncService, args: dict
) -> types.CallToolResult:
    """Handle ping tool -- probe both stores."""
    health = await run_sync(service.get_health)
    text = f"RoadWatch Sync {__version__}\n{format_health(health)}"
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={
            "version": __version__,
            "status": health.status,
        },
        isError=health.status == "error",
    )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Test sync server liveness and store connectivity",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    permissions=frozenset(),
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_service() -> SyncService:
    """Get the global SyncService instance.

    Raises:
        RuntimeError: If service is not initialized
    """
    if _service is None:
        raise RuntimeError(
            "SyncService not initialized. Server lifespan not started."
        )
    return _service


def set_service(service: SyncService | None) -> None:
    """Set the global SyncService instance, or None to clear."""
    global _service
    _service = service


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    """Set the global ToolRegistry instance, or None to clear."""
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List available sync tools.

    Returns all registered (and permitted) tools from the ToolRegistry.
    """
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch.

    Args:
        name: The name of the tool to execute.
        arguments: Tool arguments (optional).

    Returns:
        CallToolResult with tool output content and optional isError flag.
    """
    service = get_service()
    try:
        return await get_registry().call_tool(name, arguments, service)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


def build_registry(permissions_file: str | None = None) -> ToolRegistry:
    """Build the ToolRegistry, optionally filtered by a permissions file."""
    allowed_permissions = None
    if permissions_file:
        allowed_permissions = load_permissions_file(permissions_file)
        logger.info(
            "Loaded %d permissions from %s",
            len(allowed_permissions),
            permissions_file,
        )

    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs, allowed_permissions)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(all_specs),
    )
    if permissions_file:
        print(
            f"Permissions file: {permissions_file} "
            f"({registry.tool_count()} of {len(all_specs)} tools enabled)",
            file=sys.stderr,
        )
    return registry


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Sets up logging for MCP mode (file only, never stdout), builds the
    sync service via the lifespan manager, and serves JSON-RPC over stdio.

    Args:
        config_overrides: Optional dict with config values to override
            (store URLs and tokens, state_dir, insecure, log_file,
            permissions_file)
    """
    overrides = dict(config_overrides or {})
    log_file = overrides.pop("log_file", None)
    permissions_file = overrides.pop("permissions_file", None)

    # Must run before stdio_server so nothing reaches stdout
    setup_logging(
        mode="mcp", debug=overrides.get("debug", False), log_file=log_file
    )

    is_consistent, message = check_version_consistency()
    if not is_consistent:
        logger.warning(message)
        sys.stderr.write(f"Warning: {message}\n")
    else:
        logger.info(message)

    try:
        registry = build_registry(permissions_file)
    except (OSError, ValueError) as e:
        print(f"ERROR: Invalid permissions file: {e}", file=sys.stderr)
        raise RuntimeError(f"Invalid permissions file: {e}") from e
    set_registry(registry)

    # set_service() is called here rather than in the lifespan so that
    # running this file as __main__ updates this module's global.
    async with server_lifespan(config_overrides=overrides) as ctx:
        set_service(ctx["service"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="roadwatch-sync",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_service(None)
            set_registry(None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="roadwatch-sync-mcp",
        description="RoadWatch Sync MCP Server - reconciliation control surface for MCP clients",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or config.yml)
  roadwatch-sync-mcp

  # Point at both stores
  roadwatch-sync-mcp --primary-url https://reports.example.com/api \\
      --secondary-url https://field.example.com/api

  # Custom log file location
  roadwatch-sync-mcp --log-file /var/log/roadwatch-sync.log

  # Expose read-only tools only
  roadwatch-sync-mcp --permissions-file /etc/roadwatch/read-only.permissions

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr. Do not pipe stdin/stdout manually.
        """,
    )
    parser.add_argument(
        "--primary-url",
        help="Primary store API root (takes precedence over ROADWATCH_PRIMARY_URL and config files)",
    )
    parser.add_argument(
        "--primary-token",
        help="Primary store bearer token"
        " (visible in process list -- prefer ROADWATCH_PRIMARY_TOKEN env var)",
    )
    parser.add_argument(
        "--secondary-url",
        help="Secondary store API root (takes precedence over ROADWATCH_SECONDARY_URL and config files)",
    )
    parser.add_argument(
        "--secondary-token",
        help="Secondary store bearer token"
        " (visible in process list -- prefer ROADWATCH_SECONDARY_TOKEN env var)",
    )
    parser.add_argument(
        "--state-dir",
        help="Directory for persisted sync state (overrides ROADWATCH_STATE_DIR)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file",
        default="/tmp/roadwatch-sync.log",
        help="Log file path (default: /tmp/roadwatch-sync.log)",
    )
    parser.add_argument(
        "--permissions-file",
        help="Path to permissions file restricting available tools. "
        "Format: one permission per line (SYNC_VIEW, SYNC_RUN, SYNC_ADMIN), # for comments. "
        "If not specified, all tools are available.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"roadwatch-sync-mcp version {__version__}",
    )
    return parser


_OVERRIDE_KEYS = (
    "primary_url",
    "primary_token",
    "secondary_url",
    "secondary_token",
    "state_dir",
    "insecure",
    "debug",
    "log_file",
    "permissions_file",
)

_SECRET_KEYS = frozenset({"primary_token", "secondary_token"})


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    args = build_parser().parse_args()

    config_overrides = {
        key: getattr(args, key)
        for key in _OVERRIDE_KEYS
        if getattr(args, key)
    }

    if config_overrides:
        override_keys = [k for k in config_overrides if k not in _SECRET_KEYS]
        print(
            f"Config overrides from CLI: {', '.join(override_keys)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(main(config_overrides=config_overrides or None))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
