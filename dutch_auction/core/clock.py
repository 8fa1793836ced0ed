"""
Time sources
"""
import time
from abc import ABC, abstractmethod
from datetime import datetime, UTC


class Clock(ABC):
    """
    Wall clock time is used to timestamp things.
    Monotonic time is used to measure elapsed time, i.e., wall clock adjustments never affect elapsed time.
    """

    @abstractmethod
    def now(self) -> datetime:
        """
        :return: current UTC time
        """

    @abstractmethod
    def monotonic_ms(self) -> int:
        """
        :return: monotonic clock reading in milliseconds
        """


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(UTC)

    def monotonic_ms(self) -> int:
        return time.monotonic_ns() // 1_000_000
