"""Tests for setup_logging() -- where roadwatch-sync sends its log lines.

basicConfig is patched out because pytest's log capture already owns the
root logger; the tests inspect the handlers it would have installed.
"""

import json
import logging
import sys
from unittest.mock import patch

import pytest

from roadwatch_sync.logger import JsonFormatter, setup_logging


@pytest.fixture
def installed(monkeypatch):
    """Call setup_logging and return (handlers, level) given to basicConfig."""
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("LOG_FILE", raising=False)
    opened: list[logging.Handler] = []

    def _setup(**kwargs):
        with patch("roadwatch_sync.logger.logging.basicConfig") as basic:
            setup_logging(**kwargs)
        handlers = basic.call_args.kwargs["handlers"]
        opened.extend(handlers)
        return handlers, basic.call_args.kwargs["level"]

    yield _setup
    for handler in opened:
        handler.close()


def _line(formatter: logging.Formatter) -> str:
    record = logging.LogRecord(
        name="roadwatch_sync.sync.engine",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="Run #%d %s",
        args=(3, "partial"),
        exc_info=None,
    )
    return formatter.format(record)


class TestMcpMode:
    def test_file_only_at_default_path(self, installed):
        [handler], level = installed(mode="mcp")

        assert isinstance(handler, logging.FileHandler)
        assert handler.baseFilename == "/tmp/roadwatch-sync.log"
        assert level == logging.WARNING

    def test_log_file_env_and_argument(self, installed, monkeypatch, tmp_path):
        monkeypatch.setenv("LOG_FILE", str(tmp_path / "env.log"))
        [handler], _ = installed(mode="mcp")
        assert handler.baseFilename == str(tmp_path / "env.log")

        [handler], _ = installed(mode="mcp", log_file=str(tmp_path / "arg.log"))
        assert handler.baseFilename == str(tmp_path / "arg.log")

    def test_json_format_applies_to_file(self, installed, tmp_path):
        [handler], _ = installed(
            mode="mcp", log_file=str(tmp_path / "mcp.log"), debug_format="json"
        )

        data = json.loads(_line(handler.formatter))
        assert data["logger"] == "roadwatch_sync.sync.engine"
        assert data["msg"] == "Run #3 partial"


class TestCliMode:
    def test_stderr_without_logger_name(self, installed):
        [handler], level = installed(mode="cli")

        assert handler.stream is sys.stderr
        assert level == logging.INFO
        assert "roadwatch_sync" not in _line(handler.formatter)

    def test_extra_file_carries_logger_name(self, installed, tmp_path):
        handlers, _ = installed(mode="cli", log_file=str(tmp_path / "cli.log"))

        stderr, to_file = handlers
        assert isinstance(to_file, logging.FileHandler)
        assert "roadwatch_sync.sync.engine" in _line(to_file.formatter)
        assert "roadwatch_sync.sync.engine" not in _line(stderr.formatter)

    def test_debug_wins_over_env(self, installed, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        _, level = installed(mode="cli")
        assert level == logging.ERROR

        _, level = installed(mode="cli", debug=True)
        assert level == logging.DEBUG


class TestThirdPartyLoggers:
    def test_silenced_outside_debug(self, installed):
        installed(mode="cli")
        for name in ("urllib3", "requests", "mcp"):
            assert logging.getLogger(name).level == logging.WARNING


class TestJsonFormatter:
    def test_exception_stays_on_one_line(self):
        try:
            raise OSError("state dir read-only")
        except OSError:
            record = logging.LogRecord(
                name="roadwatch_sync",
                level=logging.ERROR,
                pathname=__file__,
                lineno=1,
                msg="write failed",
                args=(),
                exc_info=sys.exc_info(),
            )

        line = JsonFormatter().format(record)

        assert "\n" not in line
        assert "state dir read-only" in json.loads(line)["exc"]
