"""
Clock interface for deterministic time handling
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    """Clock interface for deterministic time handling"""

    def utc_now(self) -> datetime:
        """Get current UTC time"""
        ...


class SystemClock:
    """System clock implementation"""

    def utc_now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Deterministic clock for tests"""

    def __init__(self, fixed_time: Optional[datetime] = None):
        if fixed_time is None:
            fixed_time = datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
        self._current_time = fixed_time

    def utc_now(self) -> datetime:
        return self._current_time

    def advance(self, seconds: float) -> None:
        """Advance time by specified seconds"""
        self._current_time += timedelta(seconds=seconds)

    def set_time(self, new_time: datetime) -> None:
        self._current_time = new_time


def utc_now() -> datetime:
    """Get current UTC time"""
    return datetime.now(timezone.utc)
