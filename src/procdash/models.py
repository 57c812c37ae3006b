# src/procdash/models.py
"""Value types flowing through the sampling pipeline."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ProcessSample:
    """Raw process entry from the OS process source.

    ppid may reference a pid that is not part of the same snapshot.
    """

    pid: int
    name: str
    ppid: int


@dataclass(frozen=True)
class UsageSample:
    """Raw per-pid usage from the OS usage source."""

    cpu: float = 0.0  # Percent, 100 per core
    memory: int = 0  # Resident bytes


ZERO_USAGE = UsageSample()


@dataclass(frozen=True)
class ProcessRecord:
    """One normalized process, valid for exactly one sampling pass.

    pid is the only correlation key and is recycled by the OS, so records
    from different passes carry no shared identity.
    """

    pid: int
    name: str
    cpu: float  # 0.0 - 100.0 * core_count
    memory: int  # Whole megabytes after scaling
    ppid: int
    is_background_process: bool

    def to_dict(self) -> dict:
        """Serialize to the wire format."""
        return {
            "pid": self.pid,
            "name": self.name,
            "cpu": self.cpu,
            "memory": self.memory,
            "ppid": self.ppid,
            "isBackgroundProcess": self.is_background_process,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProcessRecord":
        """Deserialize from the wire format."""
        return cls(
            pid=data["pid"],
            name=data["name"],
            cpu=data["cpu"],
            memory=data["memory"],
            ppid=data["ppid"],
            is_background_process=data["isBackgroundProcess"],
        )


@dataclass(frozen=True)
class SystemSummary:
    """System-wide memory and platform facts, in megabytes."""

    total_memory_mb: int
    used_memory_mb: int
    free_memory_mb: int
    memory_usage_percent: float
    core_count: int
    platform: str
    release: str
    arch: str
    hostname: str

    def to_dict(self) -> dict:
        """Serialize to the wire format."""
        return {
            "totalMemory": self.total_memory_mb,
            "usedMemory": self.used_memory_mb,
            "freeMemory": self.free_memory_mb,
            "memoryUsagePercent": self.memory_usage_percent,
            "cpuCount": self.core_count,
            "platform": self.platform,
            "release": self.release,
            "arch": self.arch,
            "hostname": self.hostname,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SystemSummary":
        """Deserialize from the wire format."""
        return cls(
            total_memory_mb=data["totalMemory"],
            used_memory_mb=data["usedMemory"],
            free_memory_mb=data["freeMemory"],
            memory_usage_percent=data["memoryUsagePercent"],
            core_count=data["cpuCount"],
            platform=data["platform"],
            release=data["release"],
            arch=data["arch"],
            hostname=data["hostname"],
        )
