# src/procdash/errors.py
"""Error kinds raised by the sampling pipeline and the control surface."""

from __future__ import annotations


class ProcdashError(Exception):
    """Base class for procdash errors."""

    kind = "internal"


class SourceUnavailable(ProcdashError):
    """An OS process, usage or facts query failed.

    The whole sampling pass is treated as failed; no partial record list
    is ever returned.
    """

    kind = "source_unavailable"


class ValidationError(ProcdashError):
    """A request carried a missing or malformed argument."""

    kind = "validation"


class TerminationError(ProcdashError):
    """The OS refused or could not perform process termination."""

    kind = "termination"

    def __init__(self, pid: int, reason: str) -> None:
        super().__init__(f"Failed to terminate process {pid}: {reason}")
        self.pid = pid
        self.reason = reason


class DaemonError(ProcdashError):
    """The daemon answered a request with an error reply.

    Carries the reply's kind ("validation", "termination", ...) so callers
    can tell a rejected request from an unavailable source.
    """

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind
