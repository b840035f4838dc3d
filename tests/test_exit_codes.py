"""Tests for mapping failure counts onto exit statuses."""
from __future__ import annotations

import pytest

from launchd_activate.exit_codes import MAX_EXIT_STATUS, ExitCode, exit_status_for


@pytest.mark.parametrize(("count", "expected"), [(0, 0), (-3, 0), (1, 1), (42, 42), (255, 255)])
def test_exit_status_is_the_failure_count(count: int, expected: int) -> None:
    """Small failure counts are reported verbatim."""
    assert exit_status_for(count) == expected


@pytest.mark.parametrize("count", [256, 512, 2**31, 2**40])
def test_large_failure_counts_never_report_success(count: int) -> None:
    """Counts beyond the 8-bit range saturate instead of wrapping to zero."""
    status = exit_status_for(count)

    assert status != ExitCode.OK
    assert status == MAX_EXIT_STATUS
    assert status % 256 != 0
