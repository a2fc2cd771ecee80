import re
import time
from typing import Optional

import psutil

UNLIMITED_MEMORY = "32000M"

_UNITS = {"": 1, "K": 1024, "M": 1024 ** 2, "G": 1024 ** 3}
_HR_PATTERN = re.compile(r"^\s*(-?\d+)\s*([KMG]?)B?\s*$", re.IGNORECASE)


def convert_hr_to_bytes(value: str) -> int:
    """Convert a shorthand size such as '128M' or '2g' to bytes."""
    match = _HR_PATTERN.match(str(value))
    if not match:
        raise ValueError(f"Invalid memory size: {value!r}")
    number, unit = match.groups()
    return int(number) * _UNITS[unit.upper()]


def address_space_limit() -> Optional[int]:
    """Soft RLIMIT_AS of this process, or None where it is unset or unsupported."""
    # Process.rlimit is only available on Linux and FreeBSD
    if not hasattr(psutil, "RLIMIT_AS"):
        return None
    soft, _ = psutil.Process().rlimit(psutil.RLIMIT_AS)
    if soft == psutil.RLIM_INFINITY or soft <= 0:
        return None
    return soft


def get_memory_limit(configured: Optional[str] = None) -> int:
    """
    Memory ceiling in bytes for the running process.

    A configured limit wins. Otherwise the address-space rlimit is used.
    An unlimited ceiling falls back to 32000M so the fraction rule still applies.
    """
    if configured and convert_hr_to_bytes(configured) > 0:
        return convert_hr_to_bytes(configured)

    limit = address_space_limit()
    if limit is not None:
        return limit

    return convert_hr_to_bytes(UNLIMITED_MEMORY)


def current_memory_usage() -> int:
    """Resident set size of this process in bytes."""
    return psutil.Process().memory_info().rss


def memory_exceeded(fraction: float = 0.9, configured_limit: Optional[str] = None) -> bool:
    limit = get_memory_limit(configured_limit) * fraction
    return current_memory_usage() >= limit


class TimeBudget:
    """Wall-clock budget for one processing pass. Checked between items, never preemptive."""

    def __init__(self, limit: float):
        self.limit = limit
        self.start_time = None

    def start(self):
        self.start_time = time.monotonic()
        return self

    def elapsed(self) -> float:
        if self.start_time is None:
            return 0.0
        return time.monotonic() - self.start_time

    def exceeded(self) -> bool:
        if self.start_time is None:
            return False
        return self.elapsed() >= self.limit
