"""
Injectable clocks.

All "now" reads in the pipeline go through a clock so cooldown and cursor
logic can be exercised deterministically.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone


class Clock(ABC):
    """Source of the current UTC instant."""

    @abstractmethod
    def now_utc(self) -> datetime:
        ...


class SystemClock(Clock):
    """Clock backed by the system time."""

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)
