"""
Metrics - Collector.

============================================================
PURPOSE
============================================================
Single entry point for metric producers and metric consumers.

INGESTION (producers, any thread):
- increment_counter / set_gauge / record_latency / start_timer
- Never raises. Bad input or an internal fault is logged and the
  call becomes a no-op.

QUERIES (consumers):
- Current values, latency stats, time series, trends, snapshot, export
- Malformed parameters raise QueryValidationError

PERIODIC JOBS (scheduler):
- aggregate_metrics   hourly / daily rollups (every 60s)
- cleanup_metrics     retention sweep (hourly)

============================================================
"""

import logging
import math
import statistics as stats_lib
import threading
from collections import OrderedDict
from datetime import datetime, timedelta
from numbers import Real
from typing import Any, Dict, List, Optional, Union

from ..config import MonitoringConfig
from ..core.clock import ClockProtocol, SystemClock
from ..core.exceptions import (
    IngestionError,
    QueryValidationError,
    UnsupportedExportFormatError,
)
from ..models import (
    AggregatedData,
    ExportFormat,
    LatencyStats,
    MetricKind,
    MetricsSnapshot,
    TrendAnalysis,
    TrendDirection,
    DEFAULT_COUNTERS,
    DEFAULT_GAUGES,
    DEFAULT_LATENCIES,
)
from .exporters import EXPORTERS
from .latency import LatencyTracker
from .store import MetricStore
from .timeseries import TimeSeries


logger = logging.getLogger(__name__)

HOUR_KEY_FORMAT = "%Y-%m-%d-%H"
DAY_KEY_FORMAT = "%Y-%m-%d"

HOURLY_PERIODS_KEPT = 48
DAILY_PERIODS_KEPT = 30

# Growth rate (percent) inside which a trend counts as stable
TREND_STABLE_BAND = 5.0


class MetricsCollector:
    """
    Owns every counter, gauge, latency tracker and time series.

    Trackers and series are created on first write with an atomic
    get-or-create; there is no collector-wide lock on the write path.
    """

    def __init__(
        self,
        config: Optional[MonitoringConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize collector.

        Args:
            config: Monitoring configuration (defaults if omitted)
            clock: Clock for timestamps and cache expiry
        """
        self._config = config or MonitoringConfig()
        self._clock = clock or SystemClock()

        self._store = MetricStore()
        self._trackers: Dict[str, LatencyTracker] = {}
        self._series: Dict[str, TimeSeries] = {}

        # Rollups, touched only by the aggregation job and readers
        self._aggregate_lock = threading.Lock()
        self._hourly: "OrderedDict[str, Dict[str, AggregatedData]]" = OrderedDict()
        self._daily: "OrderedDict[str, Dict[str, AggregatedData]]" = OrderedDict()

        if self._config.register_default_metrics:
            self._register_default_metrics()

        logger.info("Metrics collector initialized")

    @property
    def clock(self) -> ClockProtocol:
        return self._clock

    @property
    def config(self) -> MonitoringConfig:
        return self._config

    # ============================================================
    # INGESTION
    # ============================================================

    def increment_counter(self, name: str, delta: int = 1) -> None:
        """Add `delta` (default 1) to counter `name`."""
        try:
            _validate_name(name)
            if isinstance(delta, bool) or not isinstance(delta, int):
                raise IngestionError(f"Counter delta must be an integer, got {delta!r}", metric_name=name)
            if delta < 0:
                raise IngestionError(f"Counter delta must not be negative, got {delta}", metric_name=name)

            self._store.increment_counter(name, delta)
            self._record_point(name, delta, MetricKind.COUNTER)

        except Exception as e:
            logger.error(f"Failed to increment counter {name!r}: {e}")

    def set_gauge(self, name: str, value: float) -> None:
        """Set gauge `name` to `value`."""
        try:
            _validate_name(name)
            _validate_number(name, value)

            self._store.set_gauge(name, value)
            self._record_point(name, value, MetricKind.GAUGE)

        except Exception as e:
            logger.error(f"Failed to set gauge {name!r}: {e}")

    def record_latency(self, name: str, latency_ms: float) -> None:
        """Record one latency sample in milliseconds."""
        try:
            _validate_name(name)
            _validate_number(name, latency_ms)
            if latency_ms < 0:
                raise IngestionError(f"Latency must not be negative, got {latency_ms}", metric_name=name)

            self._get_or_create_tracker(name).record_latency(latency_ms)
            self._record_point(name, latency_ms, MetricKind.LATENCY)

        except Exception as e:
            logger.error(f"Failed to record latency {name!r}: {e}")

    def start_timer(self, name: str) -> "Timer":
        """
        Start a scoped timer.

        Usage:
            with collector.start_timer("handler.execution.latency"):
                handle(message)
        """
        return Timer(name, self)

    # ============================================================
    # CURRENT VALUES
    # ============================================================

    def get_counter_value(self, name: str) -> int:
        return self._store.get_counter(name)

    def get_gauge_value(self, name: str) -> float:
        return self._store.get_gauge(name)

    def get_latency_stats(self, name: str) -> LatencyStats:
        """Stats for one tracker; empty stats for an unknown name."""
        tracker = self._trackers.get(name)
        if tracker is None:
            return LatencyStats.empty(self._config.latency_alert_threshold_ms)
        return tracker.get_stats()

    def get_all_latency_stats(self) -> Dict[str, LatencyStats]:
        return {name: tracker.get_stats() for name, tracker in list(self._trackers.items())}

    def get_current_value(self, name: str) -> Optional[float]:
        """
        Current value used by threshold checks.

        Counter, else gauge, else latency average, else None.
        """
        if self._store.has_counter(name):
            return float(self._store.get_counter(name))
        if self._store.has_gauge(name):
            return float(self._store.get_gauge(name))
        tracker = self._trackers.get(name)
        if tracker is not None:
            return tracker.get_stats().average
        return None

    def set_latency_threshold(self, name: str, threshold_ms: float) -> None:
        self._get_or_create_tracker(name).set_alert_threshold(threshold_ms)

    def metric_names(self) -> List[str]:
        names = set(self._store.counters())
        names.update(self._store.gauges())
        names.update(self._trackers)
        names.update(self._series)
        return sorted(names)

    def get_metric_kind(self, name: str) -> Optional[MetricKind]:
        series = self._series.get(name)
        return series.kind if series is not None else None

    # ============================================================
    # TIME SERIES & TRENDS
    # ============================================================

    def get_time_series(
        self,
        name: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Optional[TimeSeries]:
        """
        Series for `name`, optionally restricted to [start, end].

        Returns None for an unknown metric.
        """
        if (start is None) != (end is None):
            raise QueryValidationError(
                "start and end must be given together",
                parameter="range",
            )

        series = self._series.get(name)
        if series is None:
            return None
        if start is None:
            return series
        return series.filter_by_range(start, end)

    def analyze_trends(self, name: str, hours: int) -> TrendAnalysis:
        """Naive trend of `name` over the last `hours` hours."""
        if hours <= 0:
            raise QueryValidationError("hours must be positive", parameter="hours", value=hours)

        series = self._series.get(name)
        if series is None:
            return TrendAnalysis.empty(name, hours)

        now = self._clock.now()
        window = series.filter_by_range(now - timedelta(hours=hours), now)
        values = window.values()
        if not values:
            return TrendAnalysis.empty(name, hours)

        growth_rate = _growth_rate(values)

        return TrendAnalysis(
            metric_name=name,
            period_hours=hours,
            data_points=len(values),
            average=sum(values) / len(values),
            minimum=min(values),
            maximum=max(values),
            trend=_trend_direction(growth_rate),
            growth_rate=growth_rate,
            volatility=_volatility(values),
        )

    def compress_series(self, name: str, noise_threshold: float) -> int:
        """Compress one series; returns points removed (0 if unknown)."""
        series = self._series.get(name)
        if series is None:
            return 0
        return series.compress(noise_threshold)

    # ============================================================
    # SNAPSHOT & EXPORT
    # ============================================================

    def get_current_snapshot(self) -> MetricsSnapshot:
        """Point-in-time view of every metric plus current rollups."""
        now = self._clock.now()

        with self._aggregate_lock:
            aggregated = {
                "hourly": dict(self._hourly.get(now.strftime(HOUR_KEY_FORMAT), {})),
                "daily": dict(self._daily.get(now.strftime(DAY_KEY_FORMAT), {})),
            }

        return MetricsSnapshot(
            timestamp=now,
            counters=self._store.counters(),
            gauges=self._store.gauges(),
            latency_stats=self.get_all_latency_stats(),
            aggregated_metrics=aggregated,
        )

    def export_metrics(self, export_format: Union[ExportFormat, str]) -> Dict[str, Any]:
        """
        Export all metrics.

        Args:
            export_format: ExportFormat or its name (case-insensitive)

        Returns:
            {"timestamp", "format", "metrics"}; "metrics" is a dict for
            JSON and text for CSV / PROMETHEUS
        """
        fmt = _parse_export_format(export_format)
        snapshot = self.get_current_snapshot()

        return {
            "timestamp": snapshot.timestamp.isoformat(),
            "format": fmt.value,
            "metrics": EXPORTERS[fmt](snapshot),
        }

    # ============================================================
    # PERIODIC JOBS
    # ============================================================

    def aggregate_metrics(self) -> int:
        """
        Roll every series into the current hour and day windows.

        Returns:
            Number of metrics aggregated
        """
        now = self._clock.now()
        hour_start = now.replace(minute=0, second=0, microsecond=0)
        day_start = hour_start.replace(hour=0)
        hour_key = now.strftime(HOUR_KEY_FORMAT)
        day_key = now.strftime(DAY_KEY_FORMAT)

        hourly: Dict[str, AggregatedData] = {}
        daily: Dict[str, AggregatedData] = {}

        for name, series in list(self._series.items()):
            try:
                hour_values = series.filter_by_range(hour_start, now).values()
                day_values = series.filter_by_range(day_start, now).values()
                if hour_values:
                    hourly[name] = _aggregate(hour_values, hour_start, hour_start + timedelta(hours=1))
                if day_values:
                    daily[name] = _aggregate(day_values, day_start, day_start + timedelta(days=1))
            except Exception as e:
                logger.error(f"Failed to aggregate metric {name}: {e}")

        with self._aggregate_lock:
            self._hourly[hour_key] = hourly
            self._hourly.move_to_end(hour_key)
            while len(self._hourly) > HOURLY_PERIODS_KEPT:
                self._hourly.popitem(last=False)

            self._daily[day_key] = daily
            self._daily.move_to_end(day_key)
            while len(self._daily) > DAILY_PERIODS_KEPT:
                self._daily.popitem(last=False)

        logger.debug(f"Metrics aggregated: hour={hour_key}, day={day_key}, metrics={len(hourly)}")
        return len(hourly)

    def get_hourly_aggregates(self) -> Dict[str, Dict[str, AggregatedData]]:
        with self._aggregate_lock:
            return {key: dict(value) for key, value in self._hourly.items()}

    def get_daily_aggregates(self) -> Dict[str, Dict[str, AggregatedData]]:
        with self._aggregate_lock:
            return {key: dict(value) for key, value in self._daily.items()}

    def cleanup_metrics(self) -> int:
        """
        Drop points older than the retention window from every series.

        Returns:
            Total points removed
        """
        cutoff = self._clock.now() - timedelta(days=self._config.retention_days)
        removed = 0

        for name, series in list(self._series.items()):
            try:
                removed += series.remove_old_data(cutoff)
            except Exception as e:
                logger.error(f"Retention sweep failed for {name}: {e}")

        logger.info(f"Metric retention sweep complete: {removed} points removed")
        return removed

    # ============================================================
    # INTERNAL
    # ============================================================

    def _register_default_metrics(self) -> None:
        for name in DEFAULT_COUNTERS:
            self._store.register_counter(name)
            self._get_or_create_series(name, MetricKind.COUNTER)

        for name in DEFAULT_GAUGES:
            self._store.register_gauge(name)
            self._get_or_create_series(name, MetricKind.GAUGE)

        for name in DEFAULT_LATENCIES:
            self._get_or_create_tracker(name)
            self._get_or_create_series(name, MetricKind.LATENCY)

    def _get_or_create_tracker(self, name: str) -> LatencyTracker:
        tracker = self._trackers.get(name)
        if tracker is None:
            tracker = self._trackers.setdefault(
                name,
                LatencyTracker(
                    alert_threshold_ms=self._config.latency_alert_threshold_ms,
                    cache_seconds=self._config.latency_stats_cache_seconds,
                    clock=self._clock,
                ),
            )
        return tracker

    def _get_or_create_series(self, name: str, kind: MetricKind) -> TimeSeries:
        series = self._series.get(name)
        if series is None:
            series = self._series.setdefault(
                name,
                TimeSeries(
                    name,
                    kind,
                    max_points=self._config.max_points,
                    cache_minutes=self._config.series_stats_cache_minutes,
                    clock=self._clock,
                ),
            )
        return series

    def _record_point(self, name: str, value: float, kind: MetricKind) -> None:
        self._get_or_create_series(name, kind).add_point(value, self._clock.now())


# ============================================================
# TIMER
# ============================================================

class Timer:
    """Records the elapsed time of a scoped operation as a latency."""

    def __init__(self, name: str, collector: MetricsCollector):
        self.name = name
        self._collector = collector
        self._start = collector.clock.monotonic()
        self._stopped = False

    def stop(self) -> float:
        """Record and return the elapsed milliseconds. Only the first call records."""
        elapsed_ms = (self._collector.clock.monotonic() - self._start) * 1000.0
        if not self._stopped:
            self._stopped = True
            self._collector.record_latency(self.name, elapsed_ms)
        return elapsed_ms

    def __enter__(self) -> "Timer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()


# ============================================================
# HELPERS
# ============================================================

def _validate_name(name: Any) -> None:
    if not isinstance(name, str) or not name.strip():
        raise IngestionError(f"Metric name must be a non-empty string, got {name!r}")


def _validate_number(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, Real):
        raise IngestionError(f"Value must be numeric, got {value!r}", metric_name=name)
    if not math.isfinite(value):
        raise IngestionError(f"Value must be finite, got {value!r}", metric_name=name)


def _parse_export_format(value: Union[ExportFormat, str]) -> ExportFormat:
    if isinstance(value, ExportFormat):
        return value
    supported = [f.value for f in ExportFormat]
    if isinstance(value, str) and value.upper() in supported:
        return ExportFormat(value.upper())
    raise UnsupportedExportFormatError(value, supported)


def _aggregate(values: List[float], start: datetime, end: datetime) -> AggregatedData:
    total = sum(values)
    return AggregatedData(
        period_start=start,
        period_end=end,
        count=len(values),
        sum=total,
        average=total / len(values),
        minimum=min(values),
        maximum=max(values),
    )


def _growth_rate(values: List[float]) -> float:
    """Percent change from first to last value."""
    if len(values) < 2 or values[0] == 0:
        return 0.0
    return (values[-1] - values[0]) / abs(values[0]) * 100.0


def _trend_direction(growth_rate: float) -> TrendDirection:
    if growth_rate > TREND_STABLE_BAND:
        return TrendDirection.INCREASING
    if growth_rate < -TREND_STABLE_BAND:
        return TrendDirection.DECREASING
    return TrendDirection.STABLE


def _volatility(values: List[float]) -> float:
    """Coefficient of variation (population stddev over |mean|)."""
    if len(values) < 2:
        return 0.0
    mean = sum(values) / len(values)
    if mean == 0:
        return 0.0
    return stats_lib.pstdev(values) / abs(mean)
