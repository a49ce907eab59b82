"""
Metrics - Latency Tracker.

============================================================
PURPOSE
============================================================
Per-metric latency recorder.

- Running count / sum / min / max
- Fixed-bucket histogram (1ms .. 5s, overflow)
- Circular buffer of the 1,000 most recent samples
- Threshold violation counter
- Lazily computed, briefly cached LatencyStats

============================================================
PERCENTILE APPROXIMATION
============================================================
p50/p95/p99 walk the histogram in ladder order until the cumulative
count reaches ceil(p * n), then report that bucket's midpoint. The
reported value is off from the true order statistic by at most the
bucket width. The overflow bucket has no upper bound, so it reports
the largest sample seen instead of a midpoint.

============================================================
"""

import logging
import math
import threading
from bisect import bisect_left
from datetime import timedelta
from typing import List, Optional

from ..core.clock import ClockProtocol, SystemClock
from ..models import (
    HistogramData,
    LatencyStats,
    HISTOGRAM_BOUNDS_MICROS,
    RECENT_SAMPLE_BUFFER,
    LATENCY_STATS_CACHE_SECONDS,
    DEFAULT_LATENCY_ALERT_THRESHOLD_MS,
)


logger = logging.getLogger(__name__)


class LatencyTracker:
    """
    Latency recorder for a single metric.

    All mutation happens under this tracker's own lock, so concurrent
    writers racing on the same extremum never lose an update, and
    trackers for different metrics never contend.
    """

    def __init__(
        self,
        alert_threshold_ms: float = DEFAULT_LATENCY_ALERT_THRESHOLD_MS,
        buffer_size: int = RECENT_SAMPLE_BUFFER,
        cache_seconds: float = LATENCY_STATS_CACHE_SECONDS,
        clock: Optional[ClockProtocol] = None,
    ):
        """Initialize tracker."""
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()

        # Basic statistics (microseconds)
        self._total_samples = 0
        self._total_micros = 0.0
        self._min_micros = math.inf
        self._max_micros = 0.0

        # Histogram
        self._buckets: List[int] = [0] * len(HISTOGRAM_BOUNDS_MICROS)

        # Circular buffer for the recent moving average
        self._buffer_size = buffer_size
        self._recent: List[float] = [0.0] * buffer_size
        self._index = 0
        self._buffer_full = False

        # Threshold tracking
        self._alert_threshold_ms = float(alert_threshold_ms)
        self._threshold_violations = 0

        # Stats cache
        self._cache_validity = timedelta(seconds=cache_seconds)
        self._cached_stats: Optional[LatencyStats] = None

    # --------------------------------------------------------
    # RECORDING
    # --------------------------------------------------------

    def record_latency(self, latency_ms: float) -> None:
        """Record one latency sample in milliseconds."""
        self.record_latency_micros(latency_ms * 1000.0)

    def record_latency_micros(self, latency_micros: float) -> None:
        """Record one latency sample in microseconds."""
        bucket = bisect_left(HISTOGRAM_BOUNDS_MICROS, latency_micros)

        with self._lock:
            self._total_samples += 1
            self._total_micros += latency_micros

            if latency_micros < self._min_micros:
                self._min_micros = latency_micros
            if latency_micros > self._max_micros:
                self._max_micros = latency_micros

            self._buckets[bucket] += 1

            self._recent[self._index] = latency_micros
            self._index = (self._index + 1) % self._buffer_size
            if self._index == 0:
                self._buffer_full = True

            if latency_micros > self._alert_threshold_ms * 1000.0:
                self._threshold_violations += 1

            self._cached_stats = None

    def set_alert_threshold(self, threshold_ms: float) -> None:
        with self._lock:
            self._alert_threshold_ms = float(threshold_ms)
            self._cached_stats = None

    def reset(self) -> None:
        """Drop every sample and counter."""
        with self._lock:
            self._total_samples = 0
            self._total_micros = 0.0
            self._min_micros = math.inf
            self._max_micros = 0.0
            self._buckets = [0] * len(HISTOGRAM_BOUNDS_MICROS)
            self._recent = [0.0] * self._buffer_size
            self._index = 0
            self._buffer_full = False
            self._threshold_violations = 0
            self._cached_stats = None

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    @property
    def sample_count(self) -> int:
        return self._total_samples

    @property
    def alert_threshold_ms(self) -> float:
        return self._alert_threshold_ms

    def histogram(self) -> HistogramData:
        with self._lock:
            return HistogramData(counts=tuple(self._buckets))

    def get_stats(self) -> LatencyStats:
        """
        Current statistics.

        Served from cache when computed less than the validity window
        ago and no sample has arrived since.
        """
        with self._lock:
            cached = self._cached_stats
            now = self._clock.now()
            if cached is not None and cached.last_update is not None:
                if now < cached.last_update + self._cache_validity:
                    return cached

            stats = self._calculate_stats()
            if stats.sample_count:
                self._cached_stats = stats
            return stats

    # --------------------------------------------------------
    # INTERNAL (caller holds the lock)
    # --------------------------------------------------------

    def _calculate_stats(self) -> LatencyStats:
        samples = self._total_samples
        if samples == 0:
            return LatencyStats.empty(self._alert_threshold_ms)

        return LatencyStats(
            sample_count=samples,
            average=self._total_micros / samples / 1000.0,
            minimum=self._min_micros / 1000.0,
            maximum=self._max_micros / 1000.0,
            p50=self._percentile(0.50),
            p95=self._percentile(0.95),
            p99=self._percentile(0.99),
            recent_average=self._recent_average(),
            threshold_violations=self._threshold_violations,
            alert_threshold_ms=self._alert_threshold_ms,
            histogram=HistogramData(counts=tuple(self._buckets)),
            last_update=self._clock.now(),
        )

    def _percentile(self, percentile: float) -> float:
        """Bucket-midpoint approximation, in milliseconds."""
        target = max(1, math.ceil(percentile * self._total_samples))
        cumulative = 0

        for i, count in enumerate(self._buckets):
            cumulative += count
            if cumulative >= target:
                upper = HISTOGRAM_BOUNDS_MICROS[i]
                if math.isinf(upper):
                    return self._max_micros / 1000.0
                lower = HISTOGRAM_BOUNDS_MICROS[i - 1] if i > 0 else 0.0
                return (lower + upper) / 2.0 / 1000.0

        return self._max_micros / 1000.0

    def _recent_average(self) -> float:
        count = self._buffer_size if self._buffer_full else self._index
        if count == 0:
            return 0.0
        return sum(self._recent[:count]) / count / 1000.0
