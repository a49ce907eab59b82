"""
Metrics - Time Series.

============================================================
PURPOSE
============================================================
Ordered, bounded store of (timestamp, value) points for one metric.

- Range queries (inclusive on both ends)
- Downsampling, interval aggregation, noise compression
- Retention sweeps that stop at the first point past the cutoff
- Exact order statistics, cached until the next write

============================================================
ORDERING
============================================================
Points are keyed by (timestamp, insertion sequence). Two writes with
an identical timestamp are both kept, in write order. Eviction always
drops the point with the smallest key, i.e. the oldest timestamp.

============================================================
"""

import logging
import math
import statistics as stats_lib
import threading
from bisect import bisect_left, bisect_right
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from ..core.clock import ClockProtocol, SystemClock, ensure_utc
from ..core.exceptions import InvalidTimeRangeError, QueryValidationError
from ..models import (
    AggregatedData,
    DataPoint,
    MetricKind,
    SeriesStatistics,
    MAX_POINTS,
    SERIES_STATS_CACHE_MINUTES,
)


logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_Key = Tuple[datetime, int]


class TimeSeries:
    """
    Time series for a single metric.

    The lock is per series, so sweeping one metric never blocks
    writers of another.
    """

    def __init__(
        self,
        name: str,
        kind: MetricKind = MetricKind.GAUGE,
        max_points: int = MAX_POINTS,
        cache_minutes: float = SERIES_STATS_CACHE_MINUTES,
        clock: Optional[ClockProtocol] = None,
    ):
        """Initialize empty series."""
        self.name = name
        self.kind = kind
        self.max_points = max_points

        self._clock = clock or SystemClock()
        self._lock = threading.RLock()
        self._cache_minutes = cache_minutes

        # Parallel lists kept sorted by key
        self._keys: List[_Key] = []
        self._points: List[DataPoint] = []
        self._sequence = 0

        self._cached_stats: Optional[SeriesStatistics] = None
        self._stats_computed_at: Optional[datetime] = None

    # --------------------------------------------------------
    # WRITES
    # --------------------------------------------------------

    def add_point(self, value: float, timestamp: Optional[datetime] = None) -> None:
        """Insert a point, evicting the oldest if over capacity."""
        ts = ensure_utc(timestamp) if timestamp is not None else self._clock.now()
        point = DataPoint(value=float(value), timestamp=ts)

        with self._lock:
            key = (ts, self._sequence)
            self._sequence += 1

            index = bisect_right(self._keys, key)
            self._keys.insert(index, key)
            self._points.insert(index, point)

            overflow = len(self._keys) - self.max_points
            if overflow > 0:
                del self._keys[:overflow]
                del self._points[:overflow]

            self._invalidate_cache()

    def remove_old_data(self, cutoff: datetime) -> int:
        """
        Remove every point strictly before `cutoff`.

        Returns:
            Number of points removed
        """
        cutoff = ensure_utc(cutoff)
        with self._lock:
            # (cutoff, -1) sorts before any real key at the cutoff timestamp
            index = bisect_left(self._keys, (cutoff, -1))
            if index:
                del self._keys[:index]
                del self._points[:index]
                self._invalidate_cache()
            return index

    def compress(self, noise_threshold: float) -> int:
        """
        Drop interior points that differ from both neighbours by no more
        than `noise_threshold`. First and last points are always kept.

        Returns:
            Number of points removed
        """
        with self._lock:
            size = len(self._points)
            if size < 3:
                return 0

            keep = [0]
            for i in range(1, size - 1):
                prev_value = self._points[i - 1].value
                value = self._points[i].value
                next_value = self._points[i + 1].value
                if (abs(value - prev_value) > noise_threshold
                        or abs(next_value - value) > noise_threshold):
                    keep.append(i)
            keep.append(size - 1)

            removed = size - len(keep)
            if removed > 0:
                self._keys = [self._keys[i] for i in keep]
                self._points = [self._points[i] for i in keep]
                self._invalidate_cache()
                logger.debug(f"Compressed series {self.name}: removed {removed} points")
            return removed

    def clear(self) -> None:
        with self._lock:
            self._keys = []
            self._points = []
            self._invalidate_cache()

    # --------------------------------------------------------
    # QUERIES
    # --------------------------------------------------------

    def filter_by_range(self, start: datetime, end: datetime) -> "TimeSeries":
        """New series holding the points with start <= timestamp <= end."""
        start = ensure_utc(start)
        end = ensure_utc(end)
        if start > end:
            raise InvalidTimeRangeError(start, end)

        with self._lock:
            lo = bisect_left(self._keys, (start, -1))
            hi = bisect_left(self._keys, (end + timedelta(microseconds=1), -1))
            return self._derive(self._keys[lo:hi], self._points[lo:hi])

    def downsample(self, target_points: int) -> "TimeSeries":
        """
        Reduce to roughly `target_points` points.

        Every ceil(size / target)-th point is kept, plus the first and
        last point unconditionally, so the result holds at most
        target + 1 points. Returns self when already small enough.
        """
        if target_points <= 0:
            raise QueryValidationError(
                "target_points must be positive",
                parameter="target_points",
                value=target_points,
            )

        with self._lock:
            size = len(self._points)
            if size <= target_points:
                return self

            step = math.ceil(size / target_points)
            indices = list(range(0, size, step))
            if indices[-1] != size - 1:
                indices.append(size - 1)

            return self._derive(
                [self._keys[i] for i in indices],
                [self._points[i] for i in indices],
            )

    def aggregate_by_interval(self, interval_minutes: int) -> Dict[datetime, AggregatedData]:
        """
        Bucket points into windows of `interval_minutes`, aligned to
        whole minutes since the epoch.

        Returns:
            Window start -> aggregate, in time order
        """
        if interval_minutes <= 0:
            raise QueryValidationError(
                "interval_minutes must be positive",
                parameter="interval_minutes",
                value=interval_minutes,
            )

        width = timedelta(minutes=interval_minutes)
        buckets: Dict[datetime, List[float]] = {}

        with self._lock:
            for point in self._points:
                offset = (point.timestamp - _EPOCH) // width
                window_start = _EPOCH + offset * width
                buckets.setdefault(window_start, []).append(point.value)

        result: Dict[datetime, AggregatedData] = {}
        for window_start, values in buckets.items():
            total = sum(values)
            result[window_start] = AggregatedData(
                period_start=window_start,
                period_end=window_start + width,
                count=len(values),
                sum=total,
                average=total / len(values),
                minimum=min(values),
                maximum=max(values),
            )
        return result

    def statistics(self) -> SeriesStatistics:
        """
        Exact statistics over all points.

        Cached for a few minutes; any write drops the cache.
        """
        with self._lock:
            now = self._clock.now()
            if (self._cached_stats is not None
                    and self._stats_computed_at is not None
                    and now < self._stats_computed_at + timedelta(minutes=self._cache_minutes)):
                return self._cached_stats

            values = [p.value for p in self._points]
            self._cached_stats = _calculate_statistics(values)
            self._stats_computed_at = now
            return self._cached_stats

    def current_value(self) -> Optional[float]:
        with self._lock:
            return self._points[-1].value if self._points else None

    def recent_points(self, count: int) -> List[DataPoint]:
        """The newest `count` points, oldest first."""
        if count <= 0:
            return []
        with self._lock:
            return self._points[-count:]

    def points(self) -> List[DataPoint]:
        with self._lock:
            return list(self._points)

    def values(self) -> List[float]:
        with self._lock:
            return [p.value for p in self._points]

    @property
    def first_timestamp(self) -> Optional[datetime]:
        with self._lock:
            return self._points[0].timestamp if self._points else None

    @property
    def last_timestamp(self) -> Optional[datetime]:
        with self._lock:
            return self._points[-1].timestamp if self._points else None

    def average(self) -> float:
        values = self.values()
        return sum(values) / len(values) if values else 0.0

    def minimum(self) -> float:
        values = self.values()
        return min(values) if values else 0.0

    def maximum(self) -> float:
        values = self.values()
        return max(values) if values else 0.0

    def sum(self) -> float:
        return sum(self.values())

    def is_empty(self) -> bool:
        return not self._points

    def __len__(self) -> int:
        return len(self._points)

    def __repr__(self) -> str:
        return f"TimeSeries(name={self.name!r}, kind={self.kind.value}, size={len(self)})"

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _derive(self, keys: List[_Key], points: List[DataPoint]) -> "TimeSeries":
        series = TimeSeries(
            name=self.name,
            kind=self.kind,
            max_points=self.max_points,
            cache_minutes=self._cache_minutes,
            clock=self._clock,
        )
        series._keys = list(keys)
        series._points = list(points)
        series._sequence = self._sequence
        return series

    def _invalidate_cache(self) -> None:
        self._cached_stats = None
        self._stats_computed_at = None


# ============================================================
# STATISTICS
# ============================================================

def _nearest_rank(sorted_values: List[float], percentile: float) -> float:
    index = max(0, math.ceil(percentile * len(sorted_values)) - 1)
    return sorted_values[min(index, len(sorted_values) - 1)]


def _calculate_statistics(values: List[float]) -> SeriesStatistics:
    if not values:
        return SeriesStatistics.empty()

    ordered = sorted(values)
    count = len(ordered)
    total = sum(ordered)

    return SeriesStatistics(
        count=count,
        sum=total,
        average=total / count,
        minimum=ordered[0],
        maximum=ordered[-1],
        median=stats_lib.median(ordered),
        percentile_95=_nearest_rank(ordered, 0.95),
        percentile_99=_nearest_rank(ordered, 0.99),
        standard_deviation=stats_lib.pstdev(ordered),
    )
