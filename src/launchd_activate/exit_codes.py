"""Exit codes and the failure-count mapping used by the CLI."""
from __future__ import annotations

from enum import IntEnum

# POSIX keeps only the low 8 bits of an exit status.
MAX_EXIT_STATUS = 255


class ExitCode(IntEnum):
    """Well-known exit codes that do not come from a failure count."""

    OK = 0
    FATAL = 1
    INTERRUPTED = 130


def exit_status_for(error_count: int) -> int:
    """Map the number of failed operations onto a process exit status.

    Counts above 255 saturate at 255 so a large batch of failures can never
    wrap around to a successful status.
    """
    if error_count <= 0:
        return int(ExitCode.OK)
    return min(error_count, MAX_EXIT_STATUS)


__all__ = ["ExitCode", "MAX_EXIT_STATUS", "exit_status_for"]
