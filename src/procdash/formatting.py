"""Formatting utilities for consistent CLI output."""

from procdash.models import ProcessRecord


def format_memory(megabytes: int) -> str:
    """Format a megabyte figure compactly.

    Returns:
        "512M" below one gigabyte, "1.5G" at or above it.
    """
    if megabytes >= 1024:
        return f"{megabytes / 1024:.1f}G"
    return f"{megabytes}M"


def format_cpu(cpu: float) -> str:
    """Format a CPU percentage with one decimal."""
    return f"{cpu:.1f}%"


def process_kind(is_background: bool) -> str:
    """Short label for the background/foreground classification."""
    return "bg" if is_background else "fg"


def process_table(records: list[ProcessRecord]) -> list[str]:
    """Render process records as fixed-width table lines."""
    lines = [
        f"{'PID':>7}  {'PPID':>7}  {'CPU':>7}  {'MEM':>7}  {'Kind':4}  Name",
        "-" * 60,
    ]
    for r in records:
        lines.append(
            f"{r.pid:>7}  {r.ppid:>7}  {format_cpu(r.cpu):>7}  {format_memory(r.memory):>7}  "
            f"{process_kind(r.is_background_process):4}  {r.name}"
        )
    return lines
