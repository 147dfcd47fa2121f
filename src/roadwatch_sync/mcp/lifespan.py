"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from ..config import resolve_runtime_config
from ..core.async_utils import run_sync
from ..service import SyncService

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env, YAML config files and CLI overrides via resolve_runtime_config()
    - Build the SyncService and report store connectivity
    - Start the auto-sync scheduler if it is enabled

    Unreachable stores do not stop the server: they are reported on stderr
    and every sync run fails fast with ``unavailable`` until they recover.

    On shutdown:
    - Stop the scheduler (an in-flight run finishes on its own)

    Args:
        config_overrides: Optional dict with config values from CLI
            (primary_url, secondary_url, tokens, state_dir, insecure)

    Yields:
        Dict with 'service' key containing the initialized SyncService

    Raises:
        RuntimeError: If configuration is invalid or the service cannot be built.
    """
    logger.info("MCP server starting...")
    _stderr_print("RoadWatch Sync MCP Server starting...")

    try:
        config, sources = resolve_runtime_config(config_overrides)
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        for side in ("primary", "secondary"):
            section = getattr(config, side)
            target = section.url if section.kind == "rest" else "in-memory"
            logger.info("%s store: %s", side.capitalize(), target)
            _stderr_print(f"  {side.capitalize()} store: {target}")
        _stderr_print(f"  State directory: {config.state_dir}")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print(
            "  Set ROADWATCH_PRIMARY_URL / ROADWATCH_SECONDARY_URL or edit config.yml."
        )
        raise RuntimeError(f"Configuration error: {e}") from e

    try:
        service = SyncService(config)
    except Exception as e:
        logger.error("Failed to initialise sync service: %s", e)
        _stderr_print(f"ERROR: Failed to initialise sync service: {e}")
        raise RuntimeError(f"Sync service initialisation failed: {e}") from e

    status = await run_sync(service.get_status)
    logger.info(
        "Store connectivity: primary=%s secondary=%s",
        status.primary_status,
        status.secondary_status,
    )
    _stderr_print(
        f"  Stores: primary {status.primary_status}, "
        f"secondary {status.secondary_status}"
    )
    if status.pending_conflicts:
        _stderr_print(f"  Pending conflicts: {status.pending_conflicts}")

    service.start()
    if status.enabled:
        _stderr_print("  Auto-sync: enabled")
    _stderr_print("Server ready. Waiting for MCP client connection...")

    try:
        yield {"service": service}
    finally:
        logger.info("MCP server shutting down")
        await run_sync(service.shutdown)
        _stderr_print("RoadWatch Sync MCP Server shutting down.")
