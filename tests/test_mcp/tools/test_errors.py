"""Tests for mcp/tools/errors.py -- error response builders.

Covers:
- build_error_response() structure and format
- translate_sync_error() mapping of every engine exception
"""

import mcp.types as types
import pytest

from roadwatch_sync.mcp.tools.errors import (
    build_error_response,
    translate_sync_error,
)
from roadwatch_sync.sync.errors import (
    AdapterError,
    AdapterUnavailable,
    AlreadyRunning,
    ConflictAlreadyResolved,
    ConflictNotFound,
    InvalidAutoSyncConfig,
    InvalidResolutionChoice,
    RecordWriteFailed,
    RunTimeout,
)


def _get_error_text(result: types.CallToolResult) -> str:
    """Extract text from first content item with type narrowing for Pyright."""
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


# ---------------------------------------------------------------------------
# build_error_response tests
# ---------------------------------------------------------------------------


class TestBuildErrorResponse:
    """Tests for build_error_response()."""

    def test_is_error_flag(self):
        result = build_error_response("not_found", "Not found", "Try again")
        assert isinstance(result, types.CallToolResult)
        assert result.isError is True

    def test_single_text_content(self):
        result = build_error_response("not_found", "Not found", "Try again")
        assert len(result.content) == 1
        assert result.content[0].type == "text"

    def test_error_format(self):
        """Text format is 'Error ({type}): {message}\\n\\nAction: {action}'."""
        result = build_error_response(
            "not_found", "Conflict #4 not found", "Use conflict_list"
        )
        assert (
            _get_error_text(result)
            == "Error (not_found): Conflict #4 not found\n\nAction: Use conflict_list"
        )


# ---------------------------------------------------------------------------
# translate_sync_error tests
# ---------------------------------------------------------------------------


class TestTranslateSyncError:
    """Each engine exception maps to an error type and a next step."""

    @pytest.mark.parametrize(
        "error, error_type, hint",
        [
            (ConflictNotFound(12), "not_found", "conflict_list"),
            (ConflictAlreadyResolved(3), "already_resolved", "pending"),
            (AlreadyRunning(), "already_running", "sync_status"),
            (
                AdapterUnavailable(["secondary"]),
                "unavailable",
                "sync_health",
            ),
            (
                RecordWriteFailed("pg-1", 3, "timeout"),
                "unavailable",
                "still pending",
            ),
            (
                InvalidResolutionChoice("Unknown choice 'both'"),
                "validation_error",
                "'custom'",
            ),
            (
                InvalidAutoSyncConfig("interval_minutes: too large"),
                "validation_error",
                "1-1440",
            ),
        ],
    )
    def test_mapping(self, error, error_type, hint):
        text = _get_error_text(translate_sync_error(error))
        assert text.startswith(f"Error ({error_type}): {error}")
        assert hint in text

    def test_other_sync_errors_are_server_errors(self):
        for error in (AdapterError("primary", "HTTP 500"), RunTimeout(30)):
            text = _get_error_text(translate_sync_error(error))
            assert text.startswith("Error (server_error)")
            assert "sync_logs" in text

    def test_message_carries_identifiers(self):
        text = _get_error_text(translate_sync_error(ConflictNotFound(12)))
        assert "#12" in text
        text = _get_error_text(
            translate_sync_error(AdapterUnavailable(["primary", "secondary"]))
        )
        assert "primary, secondary" in text
