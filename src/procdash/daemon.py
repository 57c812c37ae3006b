"""Background daemon for procdash."""

import asyncio
import os
import resource
import signal
import sys
from dataclasses import dataclass
from datetime import datetime

import psutil
import structlog

from procdash import logging as procdash_logging
from procdash.config import Config
from procdash.control import ControlSurface
from procdash.normalizer import UsageNormalizer
from procdash.publisher import StreamingPublisher
from procdash.socket_server import SocketServer
from procdash.sources import (
    FactsSource,
    ProcessSource,
    PsutilFactsSource,
    PsutilProcessSource,
    PsutilTerminator,
    PsutilUsageSource,
    Terminator,
    UsageSource,
)

log = structlog.get_logger()


@dataclass
class DaemonState:
    """Runtime state of the daemon."""

    running: bool = False
    started_at: datetime | None = None
    heartbeat_count: int = 0

    def mark_started(self) -> None:
        self.running = True
        self.started_at = datetime.now()


class Daemon:
    """Wires OS sources, the normalizer, publisher and socket server together."""

    def __init__(
        self,
        config: Config,
        *,
        process_source: ProcessSource | None = None,
        usage_source: UsageSource | None = None,
        facts: FactsSource | None = None,
        terminator: Terminator | None = None,
    ):
        self.config = config
        self.state = DaemonState()

        sampling = config.sampling
        self.normalizer = UsageNormalizer(
            process_source or PsutilProcessSource(),
            usage_source or PsutilUsageSource(),
            facts or PsutilFactsSource(),
            background_markers=sampling.background_markers,
            background_prefix=sampling.background_prefix,
            executable_suffix=sampling.executable_suffix,
        )
        terminator = terminator or PsutilTerminator()
        self.control = ControlSurface(self.normalizer, terminator)
        self.publisher = StreamingPublisher(
            self.normalizer, terminator, interval=config.stream.interval
        )

        self._shutdown_event = asyncio.Event()
        self._socket_server: SocketServer | None = None
        self._owns_pid_file = False

    async def start(self) -> None:
        """Start the daemon and run until shutdown is requested."""
        from importlib.metadata import PackageNotFoundError, version

        try:
            pkg_version = version("procdash")
        except PackageNotFoundError:
            pkg_version = "unknown"
        log.info("daemon_starting", version=pkg_version)
        log.info(
            "daemon_config",
            stream_interval=self.config.stream.interval,
            max_clients=self.config.stream.max_clients,
            executable_suffix=self.config.sampling.executable_suffix,
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))

        if self._check_already_running():
            log.error("daemon_already_running")
            raise RuntimeError("Daemon is already running")

        self._write_pid_file()

        if not self.config.config_path.exists():
            self.config.save()
            log.info("config_created", path=str(self.config.config_path))

        self._socket_server = SocketServer(
            socket_path=self.config.socket_path,
            control=self.control,
            publisher=self.publisher,
            max_clients=self.config.stream.max_clients,
        )
        await self._socket_server.start()

        self.state.mark_started()
        log.info("daemon_started")

        await self._main_loop()

    async def stop(self) -> None:
        """Stop the daemon gracefully."""
        log.info("daemon_stopping")
        self.state.running = False

        if self._socket_server:
            await self._socket_server.stop()
            self._socket_server = None
        await self.publisher.stop()

        if self._owns_pid_file:
            self._remove_pid_file()
            self._owns_pid_file = False
        log.info("daemon_stopped")

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        log.info("signal_received", signal=sig.name)
        self._shutdown_event.set()

    def _write_pid_file(self) -> None:
        """Write PID file."""
        self.config.pid_path.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_path.write_text(str(os.getpid()))
        self._owns_pid_file = True
        log.debug("pid_file_written", path=str(self.config.pid_path))

    def _remove_pid_file(self) -> None:
        """Remove PID file."""
        if self.config.pid_path.exists():
            self.config.pid_path.unlink()
            log.debug("pid_file_removed")

    def _check_already_running(self) -> bool:
        """Check if daemon is already running.

        Verifies not just that a process with the PID exists, but that it's
        actually the procdash daemon. This prevents false positives after a
        reboot when a different process may have the same PID.
        """
        if not self.config.pid_path.exists():
            return False

        try:
            pid = int(self.config.pid_path.read_text().strip())
        except ValueError:
            log.warning("pid_file_invalid", reason="not a number")
            self._remove_pid_file()
            return False

        if pid == os.getpid():
            return False

        try:
            proc = psutil.Process(pid)
            cmdline_str = " ".join(proc.cmdline()).lower()
            if "procdash" in cmdline_str:
                log.info("daemon_already_running_verified", pid=pid)
                return True
            log.warning(
                "pid_file_stale",
                reason="different process",
                pid=pid,
                actual_process=proc.name(),
            )
            self._remove_pid_file()
            return False
        except psutil.NoSuchProcess:
            log.warning("pid_file_stale", reason="process not found", pid=pid)
            self._remove_pid_file()
            return False
        except psutil.AccessDenied:
            # Can't inspect process - assume it's running to be safe
            log.warning("pid_check_access_denied", pid=pid)
            return True

    async def _main_loop(self) -> None:
        """Wait for shutdown, logging a heartbeat every heartbeat_interval seconds.

        All sampling happens in per-client subscription tasks; this loop only
        keeps the daemon alive and reports its health.
        """
        interval = self.config.system.heartbeat_interval
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
                break
            except TimeoutError:
                self._heartbeat()
            except asyncio.CancelledError:
                log.info("main_loop_cancelled")
                break

    def _heartbeat(self) -> None:
        self.state.heartbeat_count += 1
        # ru_maxrss is KB on Linux, bytes on macOS
        rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        rss_mb = rss / 1024 / 1024 if sys.platform == "darwin" else rss / 1024
        log.info(
            "daemon_heartbeat",
            clients=self._socket_server.client_count if self._socket_server else 0,
            subscriptions=self.publisher.active_count,
            rss_mb=round(rss_mb, 1),
        )


async def run_daemon(config: Config | None = None) -> None:
    """Run the daemon until shutdown.

    Args:
        config: Optional config, loads from file if not provided
    """
    if config is None:
        config = Config.load()

    procdash_logging.configure(config)

    daemon = Daemon(config)

    try:
        await daemon.start()
    except Exception as e:
        log.exception("daemon_crashed", error=str(e))
        raise
    finally:
        await daemon.stop()
