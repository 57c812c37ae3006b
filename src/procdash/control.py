# src/procdash/control.py
"""One-shot control surface: list processes, kill a process, system facts.

Independent of any streaming subscription. A kill issued here does not
trigger a refreshed process list; that behaviour belongs to the streaming
path (see StreamingPublisher.handle_kill).
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from procdash.errors import TerminationError, ValidationError
from procdash.models import ProcessRecord, SystemSummary
from procdash.normalizer import UsageNormalizer
from procdash.sources import Terminator

log = structlog.get_logger()


def parse_pid(value: object) -> int:
    """Validate a pid argument from a client request.

    Accepts positive integers and strings holding one. Booleans, floats with
    a fractional part, empty values and anything non-positive are rejected.

    Raises:
        ValidationError: If the value is missing or malformed.
    """
    if value is None or value == "":
        raise ValidationError("Process ID is required")
    if isinstance(value, bool):
        raise ValidationError(f"Invalid process ID: {value!r}")
    if isinstance(value, int):
        pid = value
    elif isinstance(value, float) and value.is_integer():
        pid = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        pid = int(value.strip())
    else:
        raise ValidationError(f"Invalid process ID: {value!r}")
    if pid <= 0:
        raise ValidationError(f"Invalid process ID: {value!r}")
    return pid


@dataclass(frozen=True)
class KillResult:
    """Outcome of a successful one-shot kill."""

    pid: int
    message: str

    def to_dict(self) -> dict:
        return {"success": True, "pid": self.pid, "message": self.message}


class ControlSurface:
    """Request/response operations backed by the normalizer and terminator."""

    def __init__(self, normalizer: UsageNormalizer, terminator: Terminator) -> None:
        self.normalizer = normalizer
        self.terminator = terminator

    def list_processes(self) -> list[ProcessRecord]:
        """Run one sampling pass.

        Raises:
            SourceUnavailable: If the pass fails.
        """
        return self.normalizer.sample()

    def kill_process(self, pid: object) -> KillResult:
        """Request termination of a process.

        Raises:
            ValidationError: If pid is missing or malformed (no OS call made).
            TerminationError: If the OS refuses or cannot terminate it.
        """
        checked = parse_pid(pid)
        try:
            self.terminator.terminate(checked)
        except TerminationError as e:
            log.warning("kill_failed", pid=checked, reason=e.reason)
            raise
        return KillResult(pid=checked, message=f"Process {checked} has been terminated")

    def system_facts(self) -> SystemSummary:
        """Return current memory, core count and platform identifiers."""
        return self.normalizer.system_summary()
