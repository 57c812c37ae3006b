# src/procdash/normalizer.py
"""Usage normalization: turns raw OS samples into bounded, classified records.

One call to sample() is one sampling pass:

1. List processes and read system facts (core count, total/free memory)
2. Read usage for exactly the listed pids
3. Scale memory down when the per-process sum exceeds used system memory
4. Clamp CPU to [0, 100 * core_count]
5. Classify each process as background or foreground by name

The memory scaling is an approximation. Per-process RSS double counts
shared pages, so the sum across processes routinely exceeds what the
system actually has in use. Scaling every figure by the same factor brings
the total back in line while keeping relative proportions.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import structlog

from procdash.config import DEFAULT_BACKGROUND_MARKERS
from procdash.errors import SourceUnavailable
from procdash.models import ZERO_USAGE, ProcessRecord, SystemSummary, UsageSample
from procdash.sources import CpuBaseline, FactsSource, ProcessSource, UsageSource

log = structlog.get_logger()

BYTES_PER_MB = 1024 * 1024


def compute_scaling_factor(used_memory: int, reported_memory: int) -> float:
    """Return the factor that reconciles summed process memory with used memory.

    Only ever scales down: 1.0 unless the reported sum is positive and larger
    than what the system reports as used.
    """
    if reported_memory > 0 and reported_memory > used_memory:
        return used_memory / reported_memory
    return 1.0


def clamp_cpu(cpu: float | None, core_count: int) -> float:
    """Clamp a CPU percentage to [0, 100 * core_count], rounded to 2 decimals."""
    if not cpu:
        return 0.0
    ceiling = 100.0 * max(core_count, 1)
    return round(min(max(cpu, 0.0), ceiling), 2)


def scale_memory(raw_bytes: int | None, scaling_factor: float) -> int:
    """Scale raw bytes and convert to whole megabytes (never negative)."""
    if not raw_bytes or raw_bytes < 0:
        return 0
    return max(round(raw_bytes * scaling_factor / BYTES_PER_MB), 0)


def classify_background(
    name: str,
    markers: Iterable[str] = DEFAULT_BACKGROUND_MARKERS,
    prefix: str = "com.",
    executable_suffix: str = ".exe",
) -> bool:
    """Heuristic name-pattern classifier for background processes.

    True if the lowercased name contains any marker, starts with prefix, or
    does not end with executable_suffix.

    NOTE: the ".exe" suffix rule assumes Windows naming. On Linux and macOS
    executables rarely carry a suffix, so almost every process classifies as
    background there. That is the documented behaviour and is kept as is.
    """
    lowered = name.lower()
    if any(marker in lowered for marker in markers):
        return True
    if lowered.startswith(prefix):
        return True
    return not lowered.endswith(executable_suffix)


class UsageNormalizer:
    """Combines process, usage and facts sources into ProcessRecord lists."""

    def __init__(
        self,
        process_source: ProcessSource,
        usage_source: UsageSource,
        facts: FactsSource,
        *,
        background_markers: Sequence[str] = DEFAULT_BACKGROUND_MARKERS,
        background_prefix: str = "com.",
        executable_suffix: str = ".exe",
    ) -> None:
        self.process_source = process_source
        self.usage_source = usage_source
        self.facts = facts
        self._markers = tuple(m.lower() for m in background_markers)
        self._prefix = background_prefix.lower()
        self._suffix = executable_suffix.lower()

    def classify(self, name: str) -> bool:
        """Classify a process name using this normalizer's rule set."""
        return classify_background(name, self._markers, self._prefix, self._suffix)

    def sample(self, baseline: CpuBaseline | None = None) -> list[ProcessRecord]:
        """Run one sampling pass.

        CPU is measured against the caller's baseline; pass None for a
        one-off reading averaged over each process lifetime.

        Raises:
            SourceUnavailable: If any underlying source call fails. No partial
                result is returned.
        """
        try:
            processes = self.process_source.list_processes()
            core_count = self.facts.core_count()
            total_memory = self.facts.total_memory()
            free_memory = self.facts.free_memory()
            usage = self.usage_source.usage_for({p.pid for p in processes}, baseline)
        except SourceUnavailable:
            raise
        except Exception as e:
            raise SourceUnavailable(str(e)) from e

        used_memory = total_memory - free_memory
        reported_memory = sum((u.memory or 0) for u in usage.values() if u is not None)
        scaling_factor = compute_scaling_factor(used_memory, reported_memory)

        records: list[ProcessRecord] = []
        for proc in processes:
            sample: UsageSample = usage.get(proc.pid) or ZERO_USAGE
            records.append(
                ProcessRecord(
                    pid=proc.pid,
                    name=proc.name,
                    cpu=clamp_cpu(sample.cpu, core_count),
                    memory=scale_memory(sample.memory, scaling_factor),
                    ppid=proc.ppid,
                    is_background_process=self.classify(proc.name),
                )
            )

        log.debug(
            "sample_complete",
            processes=len(records),
            scaling_factor=round(scaling_factor, 4),
        )
        return records

    def system_summary(self) -> SystemSummary:
        """Read fresh system facts and convert them to megabytes.

        Raises:
            SourceUnavailable: If the facts source fails.
        """
        try:
            total = self.facts.total_memory()
            free = self.facts.free_memory()
            core_count = self.facts.core_count()
            info = self.facts.platform_info()
        except Exception as e:
            raise SourceUnavailable(str(e)) from e

        used = total - free
        percent = round(used / total * 100, 2) if total > 0 else 0.0
        return SystemSummary(
            total_memory_mb=round(total / BYTES_PER_MB),
            used_memory_mb=round(used / BYTES_PER_MB),
            free_memory_mb=round(free / BYTES_PER_MB),
            memory_usage_percent=percent,
            core_count=core_count,
            platform=info.get("platform", self.facts.platform_name()),
            release=info.get("release", ""),
            arch=info.get("arch", ""),
            hostname=info.get("hostname", ""),
        )
