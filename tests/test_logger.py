"""Tests for quote_sync.logger.

setup_logging() is checked through a patched logging.basicConfig, because
pytest's own log capture installs root handlers that would make a real
basicConfig() call a no-op.
"""

import json
import logging
import sys
from unittest.mock import patch

import pytest

from quote_sync.logger import (
    DEFAULT_LOG_FILE,
    JsonFormatter,
    resolve_level,
    setup_logging,
)

BASIC_CONFIG = "quote_sync.logger.logging.basicConfig"


class TestResolveLevel:
    @pytest.mark.parametrize(
        "env, config_level, mode, expected",
        [
            (None, None, "mcp", logging.WARNING),
            (None, None, "cli", logging.INFO),
            (None, "warning", "cli", logging.WARNING),
            ("ERROR", "DEBUG", "cli", logging.ERROR),
            ("CHATTY", None, "cli", logging.INFO),
            ("", "error", "mcp", logging.ERROR),
        ],
    )
    def test_precedence(self, monkeypatch, env, config_level, mode, expected):
        if env is None:
            monkeypatch.delenv("LOG_LEVEL", raising=False)
        else:
            monkeypatch.setenv("LOG_LEVEL", env)
        assert resolve_level(mode, level=config_level) == expected

    def test_debug_beats_everything(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        assert resolve_level("mcp", debug=True, level="WARNING") == logging.DEBUG


class TestSetupLogging:
    @patch(BASIC_CONFIG)
    def test_cli_writes_to_stderr_only(self, basic):
        setup_logging(mode="cli")

        basic.assert_called_once()
        (console,) = basic.call_args.kwargs["handlers"]
        assert isinstance(console, logging.StreamHandler)
        assert console.stream is sys.stderr

    @patch(BASIC_CONFIG)
    def test_cli_adds_file_handler(self, basic, tmp_path):
        setup_logging(mode="cli", log_file=str(tmp_path / "cli.log"))

        console, to_file = basic.call_args.kwargs["handlers"]
        try:
            assert isinstance(to_file, logging.FileHandler)
            assert "%(name)s" in to_file.formatter._fmt
            assert "%(name)s" not in console.formatter._fmt
        finally:
            to_file.close()

    @patch(BASIC_CONFIG)
    def test_cli_json_format(self, basic):
        setup_logging(mode="cli", debug_format="json")
        (console,) = basic.call_args.kwargs["handlers"]
        assert isinstance(console.formatter, JsonFormatter)

    @patch(BASIC_CONFIG)
    def test_mcp_logs_to_given_file(self, basic, tmp_path):
        target = str(tmp_path / "server.log")
        setup_logging(mode="mcp", log_file=target)

        kwargs = basic.call_args.kwargs
        assert kwargs["filename"] == target
        assert "handlers" not in kwargs

    @patch(BASIC_CONFIG)
    def test_mcp_log_file_from_env(self, basic, monkeypatch, tmp_path):
        monkeypatch.setenv("LOG_FILE", str(tmp_path / "env.log"))
        setup_logging(mode="mcp")
        assert basic.call_args.kwargs["filename"] == str(tmp_path / "env.log")

    @patch(BASIC_CONFIG)
    def test_mcp_default_log_file(self, basic, monkeypatch):
        monkeypatch.delenv("LOG_FILE", raising=False)
        setup_logging(mode="mcp")
        assert basic.call_args.kwargs["filename"] == DEFAULT_LOG_FILE

    @patch(BASIC_CONFIG)
    def test_level_passed_through(self, basic, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="cli", level="error")
        assert basic.call_args.kwargs["level"] == logging.ERROR

    @patch(BASIC_CONFIG)
    def test_http_loggers_quietened(self, _basic):
        setup_logging(mode="cli")
        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("requests").level == logging.WARNING


def _log_record(msg, args=(), level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="quote_sync.sync.scheduler",
        level=level,
        pathname="scheduler.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_basic_output(self):
        formatter = JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S")
        data = json.loads(formatter.format(_log_record("Pushed %d", (3,))))

        assert "ts" in data
        assert data["level"] == "INFO"
        assert data["logger"] == "quote_sync.sync.scheduler"
        assert data["msg"] == "Pushed 3"
        assert "exc" not in data

    def test_includes_exception(self):
        formatter = JsonFormatter()
        try:
            raise ValueError("remote unreachable")
        except ValueError:
            exc_info = sys.exc_info()

        output = formatter.format(
            _log_record("Sync failed", level=logging.ERROR, exc_info=exc_info)
        )

        data = json.loads(output)
        assert "ValueError" in data["exc"]
        assert "remote unreachable" in data["exc"]
        assert "\n" not in output
