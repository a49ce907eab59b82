"""
╔══════════════════════════════════════════════════════════════════════════════╗
║                  MESSAGE BUS METRICS & ALERTING MODELS                       ║
║                                                                              ║
║  Value types shared by the collector, the alert engine and the facade.      ║
║  Everything here is process-local and lost on restart.                       ║
║                                                                              ║
╚══════════════════════════════════════════════════════════════════════════════╝

============================================================
PERCENTILE DEFINITIONS
============================================================

Two different percentile methods are exposed under similar names:

- LatencyStats.p50 / p95 / p99 are APPROXIMATE. They are read off
  the fixed histogram ladder: the bucket where the cumulative count
  first reaches ceil(p * n) reports its midpoint. The error is bounded
  by that bucket's width. The overflow bucket (> 5s) reports the
  observed maximum.

- SeriesStatistics.median / percentile_95 / percentile_99 are EXACT
  nearest-rank order statistics over every retained point.

The two will generally disagree for the same notional metric.

============================================================
"""

from enum import Enum
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple
from dataclasses import dataclass, field


# ============================================================
# METRIC DEFINITIONS
# ============================================================

class MetricKind(Enum):
    """Kind of a metric, fixed at first write."""

    COUNTER = "COUNTER"
    GAUGE = "GAUGE"
    LATENCY = "LATENCY"
    HISTOGRAM = "HISTOGRAM"


class ExportFormat(Enum):
    """Supported export formats."""

    JSON = "JSON"
    CSV = "CSV"
    PROMETHEUS = "PROMETHEUS"


class TrendDirection(Enum):
    """Naive direction of a metric over a lookback window."""

    INCREASING = "INCREASING"
    DECREASING = "DECREASING"
    STABLE = "STABLE"


class PerformanceStatus(Enum):
    """Latency health bands, keyed on approximate p95."""

    EXCELLENT = "EXCELLENT"    # p95 < 100ms
    GOOD = "GOOD"              # p95 < 500ms
    ACCEPTABLE = "ACCEPTABLE"  # p95 < 1s
    POOR = "POOR"              # p95 < 5s
    CRITICAL = "CRITICAL"


# ============================================================
# ALERT DEFINITIONS
# ============================================================

class ThresholdOperator(Enum):
    """Comparison applied between a metric value and a threshold."""

    GT = "GT"
    LT = "LT"
    EQ = "EQ"

    @property
    def symbol(self) -> str:
        return {"GT": ">", "LT": "<", "EQ": "=="}[self.value]


class AlertSeverity(Enum):
    """Alert severity tiers."""

    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return SEVERITY_ORDER[self]


class AlertAction(Enum):
    """What happened to an alert, as recorded in history."""

    SENT = "SENT"
    RESOLVED = "RESOLVED"
    ESCALATED = "ESCALATED"


class HealthStatus(Enum):
    """Overall health derived from active alerts."""

    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


# ============================================================
# DATA POINTS & STATISTICS
# ============================================================

@dataclass(frozen=True)
class DataPoint:
    """A single (value, timestamp) sample. Immutable."""

    value: float
    timestamp: datetime


@dataclass(frozen=True)
class HistogramData:
    """Counts per histogram bucket, in ladder order."""

    counts: Tuple[int, ...]

    @property
    def total(self) -> int:
        return sum(self.counts)

    def as_dict(self) -> Dict[str, int]:
        """Bucket label -> count."""
        return dict(zip(HISTOGRAM_LABELS, self.counts))

    @classmethod
    def empty(cls) -> "HistogramData":
        return cls(counts=tuple(0 for _ in HISTOGRAM_BOUNDS_MICROS))


@dataclass(frozen=True)
class LatencyStats:
    """
    Latency statistics for one tracker, in milliseconds.

    p50/p95/p99 are histogram approximations (bucket midpoints),
    not exact order statistics.
    """

    sample_count: int
    average: float
    minimum: float
    maximum: float
    p50: float
    p95: float
    p99: float
    recent_average: float
    threshold_violations: int
    alert_threshold_ms: float
    histogram: HistogramData
    last_update: Optional[datetime] = None

    @property
    def performance_status(self) -> PerformanceStatus:
        if self.p95 < 100:
            return PerformanceStatus.EXCELLENT
        if self.p95 < 500:
            return PerformanceStatus.GOOD
        if self.p95 < 1000:
            return PerformanceStatus.ACCEPTABLE
        if self.p95 < 5000:
            return PerformanceStatus.POOR
        return PerformanceStatus.CRITICAL

    @classmethod
    def empty(cls, alert_threshold_ms: float = 5000.0) -> "LatencyStats":
        return cls(
            sample_count=0,
            average=0.0,
            minimum=0.0,
            maximum=0.0,
            p50=0.0,
            p95=0.0,
            p99=0.0,
            recent_average=0.0,
            threshold_violations=0,
            alert_threshold_ms=alert_threshold_ms,
            histogram=HistogramData.empty(),
        )


@dataclass(frozen=True)
class SeriesStatistics:
    """
    Exact statistics over every point of a time series.

    Percentiles use the nearest-rank method on the sorted values.
    """

    count: int = 0
    sum: float = 0.0
    average: float = 0.0
    minimum: float = 0.0
    maximum: float = 0.0
    median: float = 0.0
    percentile_95: float = 0.0
    percentile_99: float = 0.0
    standard_deviation: float = 0.0

    @classmethod
    def empty(cls) -> "SeriesStatistics":
        return cls()


@dataclass(frozen=True)
class AggregatedData:
    """Count/sum/avg/min/max over one time window."""

    period_start: datetime
    period_end: datetime
    count: int
    sum: float
    average: float
    minimum: float
    maximum: float


@dataclass
class TrendAnalysis:
    """Naive trend over a lookback window."""

    metric_name: str
    period_hours: int
    data_points: int = 0
    average: float = 0.0
    minimum: float = 0.0
    maximum: float = 0.0
    trend: TrendDirection = TrendDirection.STABLE
    growth_rate: float = 0.0
    volatility: float = 0.0

    @classmethod
    def empty(cls, metric_name: str = "", period_hours: int = 0) -> "TrendAnalysis":
        return cls(metric_name=metric_name, period_hours=period_hours)


@dataclass
class MetricsSnapshot:
    """Point-in-time view of every metric the collector knows."""

    timestamp: datetime
    counters: Dict[str, int]
    gauges: Dict[str, float]
    latency_stats: Dict[str, LatencyStats]
    aggregated_metrics: Dict[str, Dict[str, AggregatedData]] = field(default_factory=dict)


# ============================================================
# ALERT RECORDS
# ============================================================

@dataclass(frozen=True)
class ThresholdViolation:
    """Transient result of one threshold check."""

    metric_name: str
    current_value: float
    threshold_value: float
    operator: ThresholdOperator
    severity: AlertSeverity
    timestamp: datetime
    rule_name: Optional[str] = None


@dataclass
class Alert:
    """An alert handed to notification channels."""

    alert_id: str
    rule_name: str
    message: str
    severity: AlertSeverity
    timestamp: datetime

    # Source
    source: str = "threshold_monitor"  # threshold_monitor, manual, system

    # Context
    metric_name: Optional[str] = None
    current_value: Optional[float] = None
    threshold_value: Optional[float] = None

    # Status
    resolved: bool = False


@dataclass
class AlertState:
    """The one live state of a currently violating rule."""

    rule_name: str
    first_triggered_time: datetime
    last_triggered_time: datetime
    last_sent_time: datetime
    count: int
    severity: AlertSeverity
    resolved: bool = False


@dataclass(frozen=True)
class AlertEvent:
    """History entry."""

    alert: Alert
    action: AlertAction
    timestamp: datetime


@dataclass
class AlertingStats:
    """Counters describing the alert engine since start."""

    total_generated: int
    total_sent: int
    total_resolved: int
    total_suppressed: int
    total_escalated: int
    dispatch_failures: int
    evaluation_errors: int
    active_alerts: int
    alert_rules: int
    alert_channels: int
    recent_alerts: List[AlertEvent] = field(default_factory=list)


# ============================================================
# FACADE VIEW MODELS
# ============================================================

@dataclass
class MonitoringOverview:
    """
    Primary monitoring view.

    Assembled on demand; never a source of truth.
    """

    counters: Dict[str, int]
    gauges: Dict[str, float]
    latency_stats: Dict[str, LatencyStats]
    trends: Dict[str, TrendAnalysis]
    active_alerts: List[AlertState]
    alerting_stats: Optional[AlertingStats]
    generated_at: datetime


@dataclass
class MonitoringSummary:
    """Compact health summary."""

    health: HealthStatus
    total_counters: int
    total_gauges: int
    latency_metrics: int
    active_alerts: int
    critical_alerts: int
    warning_alerts: int
    threshold_violations: int
    generated_at: datetime


# ============================================================
# READ-ONLY ACCESS MARKERS
# ============================================================

class ReadOnlyAccess:
    """
    Marker for read-only data access.

    Views built from collector and engine state MUST use this pattern.
    """

    @staticmethod
    def verify_read_only(operation: str) -> bool:
        """Verify operation is read-only."""
        prohibited = [
            "increment", "record", "set", "add", "remove",
            "resolve", "send", "reset", "clear", "compress",
        ]
        operation_lower = operation.lower()
        for word in prohibited:
            if word in operation_lower:
                return False
        return True


# ============================================================
# CONSTANTS
# ============================================================

# Histogram ladder upper bounds (microseconds); the last bucket is unbounded
HISTOGRAM_BOUNDS_MICROS: Tuple[float, ...] = (
    1_000,       # 1ms
    5_000,       # 5ms
    10_000,      # 10ms
    25_000,      # 25ms
    50_000,      # 50ms
    100_000,     # 100ms
    250_000,     # 250ms
    500_000,     # 500ms
    1_000_000,   # 1s
    5_000_000,   # 5s
    float("inf"),
)

HISTOGRAM_LABELS: Tuple[str, ...] = (
    "<=1ms", "<=5ms", "<=10ms", "<=25ms", "<=50ms",
    "<=100ms", "<=250ms", "<=500ms", "<=1s", "<=5s", ">5s",
)

SEVERITY_ORDER = {
    AlertSeverity.INFO: 0,
    AlertSeverity.WARNING: 1,
    AlertSeverity.CRITICAL: 2,
}

# Storage limits
MAX_POINTS = 10_000
RECENT_SAMPLE_BUFFER = 1_000
ALERT_HISTORY_MAX_SIZE = 1_000

# Cache validity
LATENCY_STATS_CACHE_SECONDS = 10
SERIES_STATS_CACHE_MINUTES = 5

# Defaults
DEFAULT_LATENCY_ALERT_THRESHOLD_MS = 5_000.0
DEFAULT_RETENTION_DAYS = 7
DEFAULT_RECOVERY_MARGIN = 0.1

# Default metric set registered on collector start
DEFAULT_COUNTERS = (
    "messages.published.total",
    "messages.received.total",
    "messages.processed.success",
    "messages.processed.failed",
    "connections.active",
    "subscriptions.active",
)

DEFAULT_GAUGES = (
    "memory.usage",
    "cpu.usage",
    "queue.size",
    "connection.pool.size",
)

DEFAULT_LATENCIES = (
    "message.processing.latency",
    "redis.operation.latency",
    "handler.execution.latency",
)
