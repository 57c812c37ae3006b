# tests/test_logging.py
"""Tests for the logging setup and console helpers."""

import io
import json
import logging
import logging.handlers
from contextlib import ExitStack
from pathlib import Path
from unittest.mock import patch

import pytest
import structlog
from rich.console import Console

from procdash import logging as procdash_logging
from procdash.config import Config, SystemConfig


@pytest.fixture
def restore_logging():
    """Restore stdlib and structlog global state after configure()."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def captured_console():
    """Replace the Rich console with one writing to a buffer."""
    buffer = io.StringIO()
    console = Console(file=buffer, highlight=False, width=200, color_system=None)
    with patch.object(procdash_logging, "_console", console):
        yield buffer


def _flush_root() -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()


def _state_dir_patch(stack: ExitStack, path: Path) -> None:
    stack.enter_context(
        patch.object(Config, "state_dir", new_callable=lambda: property(lambda self: path))
    )


class TestConfigure:
    """Tests for configure()."""

    def test_structlog_events_written_as_json(self, tmp_path: Path, restore_logging) -> None:
        with ExitStack() as stack:
            _state_dir_patch(stack, tmp_path / "state")
            config = Config()
            procdash_logging.configure(config, console=False)

            structlog.get_logger().info("test_event", pid=42)
            _flush_root()

            lines = config.log_path.read_text().splitlines()

        entry = json.loads(lines[-1])
        assert entry["event"] == "test_event"
        assert entry["pid"] == 42
        assert entry["level"] == "info"

    def test_stdlib_records_tagged_with_source(self, tmp_path: Path, restore_logging) -> None:
        with ExitStack() as stack:
            _state_dir_patch(stack, tmp_path)
            config = Config()
            procdash_logging.configure(config, console=False)

            logging.getLogger("asyncio").warning("foreign message")
            _flush_root()

            entry = json.loads(config.log_path.read_text().splitlines()[-1])

        assert entry["event"] == "foreign message"
        assert entry["source"] == "daemon"
        assert "ts" in entry

    def test_debug_events_filtered(self, tmp_path: Path, restore_logging) -> None:
        with ExitStack() as stack:
            _state_dir_patch(stack, tmp_path)
            config = Config()
            procdash_logging.configure(config, console=False)

            structlog.get_logger().debug("too_chatty")
            _flush_root()

            assert "too_chatty" not in config.log_path.read_text()

    def test_uses_rotation_settings(self, tmp_path: Path, restore_logging) -> None:
        with ExitStack() as stack:
            _state_dir_patch(stack, tmp_path)
            config = Config(system=SystemConfig(log_max_bytes=1024, log_backup_count=2))
            procdash_logging.configure(config)

        handlers = logging.getLogger().handlers
        rotating = [h for h in handlers if isinstance(h, logging.handlers.RotatingFileHandler)]
        assert len(rotating) == 1
        assert rotating[0].maxBytes == 1024
        assert rotating[0].backupCount == 2
        # File handler plus console handler
        assert len(handlers) == 2


class TestConsoleHelpers:
    """Tests for the Rich console helpers."""

    def test_info_includes_level_and_message(self, captured_console) -> None:
        procdash_logging.info("hello there")
        output = captured_console.getvalue()
        assert "[info]" in output
        assert "hello there" in output

    def test_process_killed(self, captured_console) -> None:
        procdash_logging.process_killed(1234)
        output = captured_console.getvalue()
        assert "Process 1234 has been terminated" in output
        assert "☠" in output

    def test_kill_failed(self, captured_console) -> None:
        procdash_logging.kill_failed(1234, "access denied")
        output = captured_console.getvalue()
        assert "[err]" in output
        assert "Failed to kill process 1234: access denied" in output
        assert "✗" in output

    def test_daemon_not_running(self, captured_console) -> None:
        procdash_logging.daemon_not_running("/tmp/procdash/daemon.sock")
        output = captured_console.getvalue()
        assert "Daemon not running" in output
        assert "/tmp/procdash/daemon.sock" in output
