# src/procdash/sources.py
"""OS collaborators: process listing, per-pid usage, system facts, termination.

Each collaborator is a Protocol so the normalizer and publisher can be
driven by fakes in tests. The psutil-backed implementations below are what
the daemon wires in.
"""

from __future__ import annotations

import platform
import sys
import threading
import time
from collections.abc import Iterable
from typing import Protocol

import psutil
import structlog

from procdash.errors import SourceUnavailable, TerminationError
from procdash.models import ProcessSample, UsageSample

log = structlog.get_logger()


class ProcessSource(Protocol):
    def list_processes(self) -> list[ProcessSample]: ...


class UsageSource(Protocol):
    def usage_for(
        self, pids: set[int], baseline: CpuBaseline | None = None
    ) -> dict[int, UsageSample | None]: ...


class FactsSource(Protocol):
    def total_memory(self) -> int: ...

    def free_memory(self) -> int: ...

    def core_count(self) -> int: ...

    def platform_name(self) -> str: ...

    def platform_info(self) -> dict[str, str]: ...


class Terminator(Protocol):
    def terminate(self, pid: int) -> None: ...


class PsutilProcessSource:
    """Lists running processes via psutil.process_iter()."""

    def list_processes(self) -> list[ProcessSample]:
        processes: list[ProcessSample] = []
        try:
            # process_iter skips processes that vanish mid-iteration and fills
            # access-denied attributes with None.
            for proc in psutil.process_iter(["pid", "name", "ppid"]):
                info = proc.info
                processes.append(
                    ProcessSample(
                        pid=info["pid"],
                        name=info.get("name") or "",
                        ppid=info.get("ppid") or 0,
                    )
                )
        except (psutil.Error, OSError) as e:
            raise SourceUnavailable(f"process listing failed: {e}") from e
        return processes


class CpuBaseline:
    """CPU time readings from one consumer's previous pass, keyed by pid.

    Each stream subscription owns one, so a pass by one client never resets
    another client's measurement window. A pid without a previous reading
    (or whose create time changed, meaning the pid was reused) is measured
    from its start, which gives an average over the process lifetime.
    """

    def __init__(self) -> None:
        # pid -> (create_time, cpu_seconds, wall_time)
        self._readings: dict[int, tuple[float, float, float]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._readings)

    def percent(self, pid: int, create_time: float, cpu_seconds: float, now: float) -> float:
        """Record a reading and return CPU percent since the previous one."""
        with self._lock:
            previous = self._readings.get(pid)
            self._readings[pid] = (create_time, cpu_seconds, now)

        if previous is None or previous[0] != create_time:
            base_seconds, since = 0.0, create_time
        else:
            _, base_seconds, since = previous

        elapsed = now - since
        if elapsed <= 0:
            return 0.0
        return max(cpu_seconds - base_seconds, 0.0) / elapsed * 100

    def prune(self, live: Iterable[int]) -> None:
        """Forget readings for pids not in live."""
        with self._lock:
            for pid in set(self._readings) - set(live):
                del self._readings[pid]


class PsutilUsageSource:
    """Reads CPU percent and RSS for a set of pids.

    Holds no state between calls. CPU is computed from cumulative CPU times
    against the caller's CpuBaseline; without one, every reading is the
    average since the process started.
    """

    def usage_for(
        self, pids: set[int], baseline: CpuBaseline | None = None
    ) -> dict[int, UsageSample | None]:
        baseline = baseline if baseline is not None else CpuBaseline()
        usage: dict[int, UsageSample | None] = {}
        try:
            for pid in pids:
                try:
                    proc = psutil.Process(pid)
                    with proc.oneshot():
                        times = proc.cpu_times()
                        memory = proc.memory_info().rss
                        create_time = proc.create_time()
                except psutil.NoSuchProcess:
                    # Exited between listing and sampling
                    continue
                except psutil.AccessDenied:
                    usage[pid] = None
                    continue
                cpu = baseline.percent(pid, create_time, times.user + times.system, time.time())
                usage[pid] = UsageSample(cpu=cpu, memory=memory)
        except (psutil.Error, OSError) as e:
            raise SourceUnavailable(f"usage query failed: {e}") from e

        baseline.prune(pids)
        return usage


class PsutilFactsSource:
    """System memory, core count and platform identifiers."""

    def total_memory(self) -> int:
        return psutil.virtual_memory().total

    def free_memory(self) -> int:
        return psutil.virtual_memory().available

    def core_count(self) -> int:
        return psutil.cpu_count(logical=True) or 1

    def platform_name(self) -> str:
        return sys.platform

    def platform_info(self) -> dict[str, str]:
        return {
            "platform": self.platform_name(),
            "release": platform.release(),
            "arch": platform.machine(),
            "hostname": platform.node(),
        }


class PsutilTerminator:
    """Requests graceful termination of a process.

    psutil maps terminate() to SIGTERM on POSIX and TerminateProcess on
    Windows, so callers see a single contract on every platform.
    """

    def terminate(self, pid: int) -> None:
        try:
            psutil.Process(pid).terminate()
        except psutil.NoSuchProcess:
            raise TerminationError(pid, "no such process") from None
        except psutil.AccessDenied:
            raise TerminationError(pid, "access denied") from None
        except (psutil.Error, OSError) as e:
            raise TerminationError(pid, str(e)) from e
        log.info("process_terminated", pid=pid)
