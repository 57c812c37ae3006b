"""Tests for CLI commands."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from procdash.cli import main
from procdash.config import Config, StreamConfig
from procdash.errors import DaemonError
from procdash.models import ProcessRecord, SystemSummary

RECORDS = [
    ProcessRecord(pid=1, name="init", cpu=0.5, memory=10, ppid=0, is_background_process=True),
    ProcessRecord(
        pid=100, name="Notepad.exe", cpu=12.35, memory=2048, ppid=1, is_background_process=False
    ),
]

SUMMARY = SystemSummary(
    total_memory_mb=8192,
    used_memory_mb=4096,
    free_memory_mb=4096,
    memory_usage_percent=50.0,
    core_count=4,
    platform="linux",
    release="6.1.0",
    arch="x86_64",
    hostname="testhost",
)


class FakeDaemon:
    """What the fake client answers with. Set error to make requests fail."""

    def __init__(self) -> None:
        self.records = list(RECORDS)
        self.summary = SUMMARY
        self.error: DaemonError | None = None
        self.updates: list[list[ProcessRecord]] = []
        self.killed: list[int] = []
        self.subscribed = False


class FakeClient:
    """Stands in for SocketClient. The stream times out after the queued updates."""

    def __init__(self, daemon: FakeDaemon) -> None:
        self.daemon = daemon

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def list_processes(self) -> list[ProcessRecord]:
        if self.daemon.error:
            raise self.daemon.error
        return self.daemon.records

    async def kill(self, pid: int) -> str:
        if self.daemon.error:
            raise self.daemon.error
        self.daemon.killed.append(pid)
        return f"Process {pid} has been terminated"

    async def facts(self) -> SystemSummary:
        return self.daemon.summary

    async def subscribe(self) -> None:
        self.daemon.subscribed = True

    async def stream(self, timeout=None):
        for update in self.daemon.updates:
            yield update
        raise TimeoutError


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def fake_daemon():
    """Patch SocketClient so commands talk to a FakeDaemon."""
    daemon = FakeDaemon()
    with patch(
        "procdash.socket_client.SocketClient",
        lambda socket_path, **kwargs: FakeClient(daemon),
    ):
        yield daemon


def _make_path_prop(path: Path):
    """Create a property that returns a fixed path."""
    return property(lambda self: path)


class TestListCommand:
    """Tests for the list command."""

    def test_list_table(self, runner: CliRunner, fake_daemon: FakeDaemon) -> None:
        result = runner.invoke(main, ["list"])

        assert result.exit_code == 0
        assert "PID" in result.output
        assert "Notepad.exe" in result.output
        assert "2.0G" in result.output
        assert "2 processes" in result.output

    def test_list_json(self, runner: CliRunner, fake_daemon: FakeDaemon) -> None:
        result = runner.invoke(main, ["list", "--format", "json"])

        assert result.exit_code == 0
        assert json.loads(result.output) == [r.to_dict() for r in RECORDS]

    def test_list_foreground_only(self, runner: CliRunner, fake_daemon: FakeDaemon) -> None:
        result = runner.invoke(main, ["list", "--foreground-only", "-f", "json"])

        assert result.exit_code == 0
        assert [p["pid"] for p in json.loads(result.output)] == [100]

    def test_list_error_reply(self, runner: CliRunner, fake_daemon: FakeDaemon) -> None:
        fake_daemon.error = DaemonError("source_unavailable", "process listing failed")

        result = runner.invoke(main, ["list"])

        assert result.exit_code == 1
        assert "process listing failed" in result.output

    def test_list_daemon_not_running(self, runner: CliRunner, tmp_path: Path) -> None:
        socket_path = tmp_path / "missing.sock"

        with patch.object(Config, "socket_path", new_callable=lambda: _make_path_prop(socket_path)):
            result = runner.invoke(main, ["list"])

        assert result.exit_code == 1

    def test_list_timeout_exits_cleanly(self, runner: CliRunner) -> None:
        class SlowClient(FakeClient):
            async def list_processes(self):
                raise TimeoutError

        with patch(
            "procdash.socket_client.SocketClient",
            lambda socket_path, **kwargs: SlowClient(FakeDaemon()),
        ):
            result = runner.invoke(main, ["list"])

        assert result.exit_code == 1
        assert not isinstance(result.exception, TimeoutError)


class TestKillCommand:
    """Tests for the kill command."""

    def test_kill_success(self, runner: CliRunner, fake_daemon: FakeDaemon) -> None:
        result = runner.invoke(main, ["kill", "100"])

        assert result.exit_code == 0
        assert fake_daemon.killed == [100]

    def test_kill_failure_exits_nonzero(self, runner: CliRunner, fake_daemon: FakeDaemon) -> None:
        fake_daemon.error = DaemonError(
            "termination", "Failed to terminate process 100: access denied"
        )

        result = runner.invoke(main, ["kill", "100"])

        assert result.exit_code == 1
        assert fake_daemon.killed == []

    def test_kill_rejects_non_numeric_pid(
        self, runner: CliRunner, fake_daemon: FakeDaemon
    ) -> None:
        result = runner.invoke(main, ["kill", "abc"])

        assert result.exit_code != 0
        assert fake_daemon.killed == []


class TestFactsCommand:
    """Tests for the facts command."""

    def test_facts_output(self, runner: CliRunner, fake_daemon: FakeDaemon) -> None:
        result = runner.invoke(main, ["facts"])

        assert result.exit_code == 0
        assert "Platform: linux 6.1.0 (x86_64)" in result.output
        assert "Host: testhost" in result.output
        assert "CPU cores: 4" in result.output
        assert "4096MB used / 8192MB total (50.0%)" in result.output


class TestWatchCommand:
    """Tests for the watch command."""

    def test_watch_prints_each_update(self, runner: CliRunner, fake_daemon: FakeDaemon) -> None:
        fake_daemon.updates = [RECORDS, RECORDS[:1]]

        result = runner.invoke(main, ["watch", "--count", "2"])

        assert result.exit_code == 0
        assert fake_daemon.subscribed
        assert "2 processes (1 background), 2058MB resident" in result.output
        assert "1 processes (1 background), 10MB resident" in result.output

    def test_watch_table(self, runner: CliRunner, fake_daemon: FakeDaemon) -> None:
        fake_daemon.updates = [RECORDS]

        result = runner.invoke(main, ["watch", "-n", "1", "--table"])

        assert result.exit_code == 0
        assert "Notepad.exe" in result.output

    def test_watch_stalled_stream_exits_cleanly(
        self, runner: CliRunner, fake_daemon: FakeDaemon
    ) -> None:
        """A daemon that stops sending updates ends watch with exit 1, not a traceback."""
        fake_daemon.updates = [RECORDS]

        result = runner.invoke(main, ["watch"])

        assert result.exit_code == 1
        assert "1 processes" not in result.output
        assert "2 processes" in result.output
        assert not isinstance(result.exception, TimeoutError)


class TestStatusCommand:
    """Tests for the status command."""

    def test_status_stopped(self, runner: CliRunner, tmp_path: Path) -> None:
        with patch.object(Config, "runtime_dir", new_callable=lambda: _make_path_prop(tmp_path)):
            result = runner.invoke(main, ["status"])

        assert result.exit_code == 0
        assert "Daemon: stopped" in result.output
        assert "PID:" not in result.output

    def test_status_running(self, runner: CliRunner, tmp_path: Path) -> None:
        (tmp_path / "daemon.sock").touch()
        (tmp_path / "daemon.pid").write_text("4242\n")

        with patch.object(Config, "runtime_dir", new_callable=lambda: _make_path_prop(tmp_path)):
            result = runner.invoke(main, ["status"])

        assert result.exit_code == 0
        assert "Daemon: running" in result.output
        assert "PID: 4242" in result.output


class TestConfigCommand:
    """Tests for the config command group."""

    def test_config_show_defaults(self, runner: CliRunner, tmp_path: Path) -> None:
        """config show displays default values when no config file exists."""
        config_path = tmp_path / "config.toml"

        with patch.object(Config, "config_path", new_callable=lambda: _make_path_prop(config_path)):
            result = runner.invoke(main, ["config", "show"])

        assert result.exit_code == 0
        assert "Exists: False" in result.output
        assert "[stream]" in result.output
        defaults = Config()
        assert f"interval = {defaults.stream.interval}" in result.output
        assert "[sampling]" in result.output
        assert "executable_suffix = '.exe'" in result.output

    def test_config_show_custom_values(self, runner: CliRunner, tmp_path: Path) -> None:
        """config show displays custom values from config file."""
        config_path = tmp_path / "config.toml"
        Config(stream=StreamConfig(interval=2.0, max_clients=8)).save(config_path)

        with patch.object(Config, "config_path", new_callable=lambda: _make_path_prop(config_path)):
            result = runner.invoke(main, ["config", "show"])

        assert result.exit_code == 0
        assert "Exists: True" in result.output
        assert "interval = 2.0" in result.output
        assert "max_clients = 8" in result.output

    def test_config_reset_with_confirmation(self, runner: CliRunner, tmp_path: Path) -> None:
        """config reset resets config when user confirms."""
        config_path = tmp_path / "config.toml"
        Config(stream=StreamConfig(interval=99.0)).save(config_path)

        with (
            patch.object(Config, "config_path", new_callable=lambda: _make_path_prop(config_path)),
            patch.object(Config, "config_dir", new_callable=lambda: _make_path_prop(tmp_path)),
        ):
            result = runner.invoke(main, ["config", "reset", "--yes"])

        assert result.exit_code == 0
        assert f"Config reset to defaults at {config_path}" in result.output
        assert Config.load(config_path).stream.interval == 5.0

    def test_config_reset_aborts_without_confirmation(
        self, runner: CliRunner, tmp_path: Path
    ) -> None:
        config_path = tmp_path / "config.toml"
        Config(stream=StreamConfig(interval=99.0)).save(config_path)

        with patch.object(Config, "config_path", new_callable=lambda: _make_path_prop(config_path)):
            result = runner.invoke(main, ["config", "reset"], input="n\n")

        assert result.exit_code != 0
        assert Config.load(config_path).stream.interval == 99.0
