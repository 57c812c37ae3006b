"""Shared test fixtures for procdash."""

import tempfile
from collections.abc import Iterator
from pathlib import Path

import pytest

from procdash.errors import SourceUnavailable, TerminationError
from procdash.models import ProcessSample, UsageSample
from procdash.normalizer import UsageNormalizer
from procdash.sources import CpuBaseline

MB = 1024 * 1024


class FakeProcessSource:
    """In-memory process source. Set fail=True to simulate an OS error."""

    def __init__(self, processes: list[ProcessSample] | None = None) -> None:
        self.processes = list(processes or [])
        self.fail = False
        self.calls = 0

    def list_processes(self) -> list[ProcessSample]:
        self.calls += 1
        if self.fail:
            raise SourceUnavailable("process listing failed")
        return list(self.processes)


class FakeUsageSource:
    """In-memory usage source recording the pid sets and baselines it was asked for."""

    def __init__(self, usage: dict[int, UsageSample | None] | None = None) -> None:
        self.usage = dict(usage or {})
        self.fail = False
        self.requested: list[set[int]] = []
        self.baselines: list[CpuBaseline | None] = []

    def usage_for(
        self, pids: set[int], baseline: CpuBaseline | None = None
    ) -> dict[int, UsageSample | None]:
        self.requested.append(set(pids))
        self.baselines.append(baseline)
        if self.fail:
            raise SourceUnavailable("usage query failed")
        return dict(self.usage)


class FakeFacts:
    """Fixed system facts."""

    def __init__(self, total: int = 8192 * MB, free: int = 4096 * MB, cores: int = 4) -> None:
        self.total = total
        self.free = free
        self.cores = cores

    def total_memory(self) -> int:
        return self.total

    def free_memory(self) -> int:
        return self.free

    def core_count(self) -> int:
        return self.cores

    def platform_name(self) -> str:
        return "linux"

    def platform_info(self) -> dict[str, str]:
        return {"platform": "linux", "release": "6.1.0", "arch": "x86_64", "hostname": "testhost"}


class FakeTerminator:
    """Records terminate() calls; pids in `refuse` raise TerminationError."""

    def __init__(self, refuse: dict[int, str] | None = None) -> None:
        self.refuse = dict(refuse or {})
        self.calls: list[int] = []

    def terminate(self, pid: int) -> None:
        self.calls.append(pid)
        if pid in self.refuse:
            raise TerminationError(pid, self.refuse[pid])


@pytest.fixture
def short_tmp_path() -> Iterator[Path]:
    """Create a short temporary path for Unix sockets.

    macOS has a 104-character limit for Unix socket paths.
    pytest's tmp_path is too long, so we use /tmp directly.
    """
    with tempfile.TemporaryDirectory(dir="/tmp", prefix="pd_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def process_source() -> FakeProcessSource:
    return FakeProcessSource(
        [
            ProcessSample(pid=1, name="init", ppid=0),
            ProcessSample(pid=100, name="Notepad.exe", ppid=1),
            ProcessSample(pid=200, name="system-helper.exe", ppid=1),
        ]
    )


@pytest.fixture
def usage_source() -> FakeUsageSource:
    return FakeUsageSource(
        {
            1: UsageSample(cpu=0.5, memory=10 * MB),
            100: UsageSample(cpu=12.3456, memory=200 * MB),
            200: UsageSample(cpu=3.0, memory=50 * MB),
        }
    )


@pytest.fixture
def facts() -> FakeFacts:
    return FakeFacts()


@pytest.fixture
def terminator() -> FakeTerminator:
    return FakeTerminator()


@pytest.fixture
def normalizer(process_source, usage_source, facts) -> UsageNormalizer:
    return UsageNormalizer(process_source, usage_source, facts)
