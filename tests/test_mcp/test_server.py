"""Tests for tool registration and routing in the MCP server.

Verifies:
- Every sync tool plus ping appears in handle_list_tools
- Tool calls route through the global ToolRegistry to the live service
- Unknown or filtered-out tools return an unknown_tool error response
- build_registry honours a permissions file
- The command-line parser exposes the store and logging overrides

Detailed handler behaviour is tested in tests/test_mcp/tools/ -- this
file only tests the server routing layer.
"""

import asyncio

import mcp.types as types
import pytest

from roadwatch_sync import __version__
from roadwatch_sync.mcp.server import (
    PING_SPEC,
    build_parser,
    build_registry,
    get_registry,
    get_service,
    handle_call_tool,
    handle_list_tools,
    set_registry,
    set_service,
)
from roadwatch_sync.mcp.tools import ALL_SPECS


@pytest.fixture
def live_server(service):
    """Install a full registry and the fixture service as server globals."""
    set_registry(build_registry())
    set_service(service)
    yield service
    set_service(None)
    set_registry(None)


def _text(result: types.CallToolResult) -> str:
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


class TestGlobals:
    def test_uninitialised_service(self):
        set_service(None)
        with pytest.raises(RuntimeError, match="not initialized"):
            get_service()

    def test_uninitialised_registry(self):
        set_registry(None)
        with pytest.raises(RuntimeError, match="not initialized"):
            get_registry()


class TestToolRegistration:
    def test_all_tools_listed(self, live_server):
        tools = asyncio.run(handle_list_tools())
        names = [t.name for t in tools]

        assert names[0] == "ping"
        assert names[1:] == [spec.tool.name for spec in ALL_SPECS]
        assert len(names) == 14

    def test_ping_needs_no_permission(self):
        assert PING_SPEC.permissions == frozenset()


class TestRouting:
    async def test_ping_reports_health(self, live_server):
        result = await handle_call_tool("ping", None)

        assert not result.isError
        assert _text(result).startswith(f"RoadWatch Sync {__version__}")
        assert result.structuredContent == {
            "version": __version__,
            "status": "ok",
        }

    async def test_ping_with_no_store_is_error(
        self, live_server, primary, secondary
    ):
        primary.online = False
        secondary.online = False

        result = await handle_call_tool("ping", {})

        assert result.isError
        assert result.structuredContent["status"] == "error"

    async def test_routes_to_service(self, live_server):
        result = await handle_call_tool("sync_status", {})
        assert result.structuredContent["primary_status"] == "connected"

    async def test_unknown_tool(self, live_server):
        result = await handle_call_tool("wiki_get", {})

        assert result.isError
        assert _text(result).startswith("Error (unknown_tool)")
        assert "list_tools" in _text(result)

    async def test_filtered_tool_is_unknown(self, live_server, tmp_path):
        path = tmp_path / "read-only.permissions"
        path.write_text("SYNC_VIEW\n")
        set_registry(build_registry(str(path)))

        result = await handle_call_tool("sync_reset", {})

        assert result.isError
        assert "Error (unknown_tool)" in _text(result)


class TestBuildRegistry:
    def test_without_permissions_file(self):
        assert build_registry().tool_count() == len(ALL_SPECS) + 1

    def test_view_only(self, tmp_path, capsys):
        path = tmp_path / "read-only.permissions"
        path.write_text("# dashboards\nSYNC_VIEW\n")

        registry = build_registry(str(path))

        names = {tool.name for tool in registry.list_tools()}
        assert "ping" in names
        assert "sync_status" in names
        assert "sync_run" not in names
        assert "conflict_resolve" not in names
        assert "Permissions file:" in capsys.readouterr().err

    def test_invalid_permissions_file(self, tmp_path):
        path = tmp_path / "bad.permissions"
        path.write_text("view\n")
        with pytest.raises(ValueError, match="Invalid permission"):
            build_registry(str(path))


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.primary_url is None
        assert args.insecure is False
        assert args.log_file == "/tmp/roadwatch-sync.log"

    def test_overrides(self):
        args = build_parser().parse_args(
            [
                "--primary-url",
                "https://pg.example.org",
                "--secondary-url",
                "https://fb.example.org",
                "--state-dir",
                "/var/lib/roadwatch",
                "--permissions-file",
                "ops.permissions",
                "--debug",
            ]
        )
        assert args.primary_url == "https://pg.example.org"
        assert args.secondary_url == "https://fb.example.org"
        assert args.state_dir == "/var/lib/roadwatch"
        assert args.permissions_file == "ops.permissions"
        assert args.debug is True
