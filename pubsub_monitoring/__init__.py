"""
Pub/Sub Monitoring.

============================================================
PURPOSE
============================================================
In-process metrics collection, time-series storage and
threshold alerting for a message-bus monitoring dashboard.

PRINCIPLES:
- Ingestion never raises and never blocks on I/O
- All state is process-local and lost on restart
- Alert delivery is best effort, exactly once per cooldown cycle

============================================================
"""

from .config import MonitoringConfig
from .models import (
    MetricKind,
    ExportFormat,
    TrendDirection,
    PerformanceStatus,
    ThresholdOperator,
    AlertSeverity,
    AlertAction,
    HealthStatus,
    DataPoint,
    HistogramData,
    LatencyStats,
    SeriesStatistics,
    AggregatedData,
    TrendAnalysis,
    MetricsSnapshot,
    ThresholdViolation,
    Alert,
    AlertState,
    AlertEvent,
    AlertingStats,
    MonitoringOverview,
    MonitoringSummary,
)
from .metrics import (
    MetricStore,
    LatencyTracker,
    TimeSeries,
    MetricsCollector,
    Timer,
)
from .alerts import (
    AlertRule,
    EscalationLevel,
    EscalationPolicy,
    AlertHistory,
    AlertEngine,
    get_default_rules,
)
from .notifications import (
    NotificationChannel,
    LogChannel,
    ConsoleChannel,
    TelegramChannel,
)
from .dashboard_service import MonitoringFacade
from .scheduler import MonitoringScheduler, JobStats
from .runtime import MonitoringRuntime, create_monitoring_runtime
from .logging_config import setup_logging


__version__ = "1.0.0"

__all__ = [
    # Config
    "MonitoringConfig",
    "setup_logging",

    # Models
    "MetricKind",
    "ExportFormat",
    "TrendDirection",
    "PerformanceStatus",
    "ThresholdOperator",
    "AlertSeverity",
    "AlertAction",
    "HealthStatus",
    "DataPoint",
    "HistogramData",
    "LatencyStats",
    "SeriesStatistics",
    "AggregatedData",
    "TrendAnalysis",
    "MetricsSnapshot",
    "ThresholdViolation",
    "Alert",
    "AlertState",
    "AlertEvent",
    "AlertingStats",
    "MonitoringOverview",
    "MonitoringSummary",

    # Metrics
    "MetricStore",
    "LatencyTracker",
    "TimeSeries",
    "MetricsCollector",
    "Timer",

    # Alerts
    "AlertRule",
    "EscalationLevel",
    "EscalationPolicy",
    "AlertHistory",
    "AlertEngine",
    "get_default_rules",

    # Notifications
    "NotificationChannel",
    "LogChannel",
    "ConsoleChannel",
    "TelegramChannel",

    # Facade & runtime
    "MonitoringFacade",
    "MonitoringScheduler",
    "JobStats",
    "MonitoringRuntime",
    "create_monitoring_runtime",
]
