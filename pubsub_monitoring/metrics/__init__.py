"""
Metrics Package.

Counters, gauges, latency trackers and time series, plus the
collector that owns them and the exporters that render them.
"""

from .store import MetricStore
from .latency import LatencyTracker
from .timeseries import TimeSeries
from .collector import MetricsCollector, Timer
from .exporters import export_csv, export_json, export_prometheus, prometheus_name


__all__ = [
    "MetricStore",
    "LatencyTracker",
    "TimeSeries",
    "MetricsCollector",
    "Timer",
    "export_csv",
    "export_json",
    "export_prometheus",
    "prometheus_name",
]
