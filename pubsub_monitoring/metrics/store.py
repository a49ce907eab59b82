"""
Metrics - Counter & Gauge Store.

============================================================
PURPOSE
============================================================
Named counters and gauges shared by every producer thread.

PRINCIPLES:
- Created transparently on first write, never pre-registered
- Unknown reads return zero, nothing here raises
- No store-wide lock: get-or-create is a single dict.setdefault,
  and each counter serializes only its own increments

============================================================
"""

import logging
import threading
from typing import Dict, Union


logger = logging.getLogger(__name__)

Number = Union[int, float]


class _Counter:
    """A single monotonically increasing counter."""

    __slots__ = ("_value", "_lock")

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def add(self, delta: int) -> None:
        with self._lock:
            self._value += delta

    @property
    def value(self) -> int:
        return self._value


class MetricStore:
    """
    Holds named counters and gauges.

    Gauge writes replace a single dict slot, which is atomic. Counter
    increments take the lock of that one counter only, so producers
    writing different metrics never contend.
    """

    def __init__(self) -> None:
        """Initialize empty store."""
        self._counters: Dict[str, _Counter] = {}
        self._gauges: Dict[str, Number] = {}

    # --------------------------------------------------------
    # WRITES
    # --------------------------------------------------------

    def increment_counter(self, name: str, delta: int = 1) -> None:
        """Add `delta` to counter `name`, creating it if needed."""
        self._get_or_create_counter(name).add(delta)

    def set_gauge(self, name: str, value: Number) -> None:
        """Set gauge `name` to `value`."""
        self._gauges[name] = value

    def register_counter(self, name: str) -> None:
        """Make a counter visible at zero without writing to it."""
        self._get_or_create_counter(name)

    def register_gauge(self, name: str) -> None:
        """Make a gauge visible at zero without writing to it."""
        self._gauges.setdefault(name, 0)

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    def get_counter(self, name: str) -> int:
        counter = self._counters.get(name)
        return counter.value if counter is not None else 0

    def get_gauge(self, name: str) -> Number:
        return self._gauges.get(name, 0)

    def has_counter(self, name: str) -> bool:
        return name in self._counters

    def has_gauge(self, name: str) -> bool:
        return name in self._gauges

    def counters(self) -> Dict[str, int]:
        """Snapshot of all counter values."""
        return {name: counter.value for name, counter in list(self._counters.items())}

    def gauges(self) -> Dict[str, Number]:
        """Snapshot of all gauge values."""
        return dict(self._gauges)

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _get_or_create_counter(self, name: str) -> _Counter:
        counter = self._counters.get(name)
        if counter is None:
            # setdefault keeps the first writer's counter if two threads race here
            counter = self._counters.setdefault(name, _Counter())
        return counter
