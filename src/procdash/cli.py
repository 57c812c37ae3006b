"""CLI commands for procdash."""

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, NoReturn, TypeVar

import click

from procdash.config import Config
from procdash.errors import DaemonError

if TYPE_CHECKING:
    from procdash.socket_client import SocketClient

T = TypeVar("T")


def _run(config: Config, operation: "Callable[[SocketClient], Awaitable[T]]") -> T:
    """Connect to the daemon, run operation(client) and return its result.

    Exits with status 1 if the daemon is not running, stops answering or
    drops the connection. DaemonError replies propagate to the command.
    """
    from procdash import logging as console
    from procdash.socket_client import SocketClient

    async def _main() -> T:
        client = SocketClient(config.socket_path)
        await client.connect()
        try:
            return await operation(client)
        finally:
            await client.disconnect()

    try:
        return asyncio.run(_main())
    except (FileNotFoundError, ConnectionRefusedError):
        console.daemon_not_running(str(config.socket_path))
        raise SystemExit(1)
    except TimeoutError:
        console.error("Timed out waiting for the daemon")
        raise SystemExit(1)
    except ConnectionError as e:
        console.error(f"Lost connection to the daemon: {e}")
        raise SystemExit(1)


def _fail(e: DaemonError) -> NoReturn:
    click.echo(f"Error ({e.kind}): {e}", err=True)
    raise SystemExit(1)


@click.group()
@click.version_option(package_name="procdash")
def main() -> None:
    """Live process-monitoring dashboard."""
    pass


@main.command()
def daemon() -> None:
    """Run the sampling daemon."""
    from procdash.daemon import run_daemon

    asyncio.run(run_daemon())


@main.command("list")
@click.option("--format", "-f", "fmt", type=click.Choice(["table", "json"]), default="table")
@click.option("--foreground-only", is_flag=True, help="Hide background processes")
def list_processes(fmt: str, foreground_only: bool) -> None:
    """List processes with normalized CPU and memory."""
    from procdash.formatting import process_table

    config = Config.load()
    try:
        records = _run(config, lambda client: client.list_processes())
    except DaemonError as e:
        _fail(e)

    if foreground_only:
        records = [r for r in records if not r.is_background_process]

    if fmt == "json":
        click.echo(json.dumps([r.to_dict() for r in records], indent=2))
        return

    for line in process_table(records):
        click.echo(line)
    click.echo(f"\n{len(records)} processes")


@main.command()
@click.argument("pid", type=int)
def kill(pid: int) -> None:
    """Request termination of a process."""
    from procdash import logging as console

    config = Config.load()
    try:
        _run(config, lambda client: client.kill(pid))
    except DaemonError as e:
        console.kill_failed(pid, str(e))
        raise SystemExit(1)
    console.process_killed(pid)


@main.command()
def facts() -> None:
    """Show system memory, core count and platform."""
    config = Config.load()
    try:
        f = _run(config, lambda client: client.facts())
    except DaemonError as e:
        _fail(e)

    click.echo(f"Platform: {f.platform} {f.release} ({f.arch})")
    click.echo(f"Host: {f.hostname}")
    click.echo(f"CPU cores: {f.core_count}")
    click.echo(
        f"Memory: {f.used_memory_mb}MB used / {f.total_memory_mb}MB total "
        f"({f.memory_usage_percent}%), {f.free_memory_mb}MB free"
    )


@main.command()
@click.option("--count", "-n", default=0, help="Stop after N updates (0 = run until interrupted)")
@click.option("--table", "show_table", is_flag=True, help="Print the full process table")
def watch(count: int, show_table: bool) -> None:
    """Stream live process updates from the daemon."""
    from datetime import datetime

    from procdash.formatting import process_table

    config = Config.load()
    # Generous read timeout: one update arrives per stream interval
    timeout = config.stream.interval * 3

    async def _watch(client: "SocketClient") -> None:
        received = 0
        await client.subscribe()
        async for records in client.stream(timeout=timeout):
            received += 1
            background = sum(1 for r in records if r.is_background_process)
            total_mb = sum(r.memory for r in records)
            click.echo(
                f"[{datetime.now().strftime('%H:%M:%S')}] {len(records)} processes "
                f"({background} background), {total_mb}MB resident"
            )
            if show_table:
                for line in process_table(records):
                    click.echo(line)
            if count and received >= count:
                break

    try:
        _run(config, _watch)
    except DaemonError as e:
        _fail(e)
    except KeyboardInterrupt:
        pass


@main.command()
def status() -> None:
    """Quick health check."""
    config = Config.load()

    daemon_running = config.socket_path.exists()
    click.echo(f"Daemon: {'running' if daemon_running else 'stopped'}")
    if config.pid_path.exists():
        click.echo(f"PID: {config.pid_path.read_text().strip()}")
    click.echo(f"Socket: {config.socket_path}")
    click.echo(f"Stream interval: {config.stream.interval}s")


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    cfg = Config.load()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo("[stream]")
    click.echo(f"  interval = {cfg.stream.interval}")
    click.echo(f"  max_clients = {cfg.stream.max_clients}")
    click.echo()
    click.echo("[sampling]")
    click.echo(f"  background_markers = {cfg.sampling.background_markers}")
    click.echo(f"  background_prefix = {cfg.sampling.background_prefix!r}")
    click.echo(f"  executable_suffix = {cfg.sampling.executable_suffix!r}")
    click.echo()
    click.echo("[system]")
    click.echo(f"  heartbeat_interval = {cfg.system.heartbeat_interval}")
    click.echo(f"  log_max_bytes = {cfg.system.log_max_bytes}")
    click.echo(f"  log_backup_count = {cfg.system.log_backup_count}")


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")
