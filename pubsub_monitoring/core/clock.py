"""
Core Module - Clock.

============================================================
RESPONSIBILITY
============================================================
Single source of time for the monitoring pipeline.

- Timestamps, cooldowns, cache expiry and retention cutoffs all
  read this clock, so tests can drive them with MockClock
- Wall-clock readings are timezone-aware UTC
- Naive datetimes handed in by callers are taken to be UTC

============================================================
"""

import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime; aware values pass through."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """What every component needs from a clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Current wall-clock time, UTC."""
        pass

    @abstractmethod
    def monotonic(self) -> float:
        """Seconds on a clock that never goes backwards, for durations."""
        pass


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """Reads the host clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Hand-driven clock for tests.

    Time only moves through set_time() and advance(). The monotonic
    reading is the wall-clock distance from the starting instant, so
    timers and cooldowns stay in step.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        self._time = ensure_utc(initial_time or datetime.now(timezone.utc))
        self._origin = self._time
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._time

    def monotonic(self) -> float:
        with self._lock:
            return (self._time - self._origin).total_seconds()

    def set_time(self, new_time: datetime) -> None:
        """Jump to `new_time` (naive means UTC)."""
        with self._lock:
            self._time = ensure_utc(new_time)

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Move forward.

        Args:
            seconds: Seconds to add
            **kwargs: Extra timedelta units (minutes=, hours=, days=)
        """
        with self._lock:
            self._time += timedelta(seconds=seconds, **kwargs)
