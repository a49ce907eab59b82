"""
Metrics - Exporters.

============================================================
PURPOSE
============================================================
Render a MetricsSnapshot in the supported export formats.

JSON        structured dict, JSON-serializable
CSV         `metric,type,field,value` rows with a header
PROMETHEUS  text exposition format; latency trackers are exported
            as cumulative histograms (`_bucket{le=...}`, `_sum`,
            `_count`) with `le` in seconds

============================================================
"""

import csv
import io
import math
import re
from typing import Any, Callable, Dict, List

from ..models import (
    ExportFormat,
    LatencyStats,
    MetricsSnapshot,
    HISTOGRAM_BOUNDS_MICROS,
)


_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_:]")

_LATENCY_FIELDS = (
    "sample_count", "average", "minimum", "maximum",
    "p50", "p95", "p99", "recent_average", "threshold_violations",
)


def prometheus_name(name: str) -> str:
    """Map a dotted metric name onto the Prometheus name charset."""
    sanitized = _INVALID_NAME_CHARS.sub("_", name)
    if sanitized and sanitized[0].isdigit():
        sanitized = f"_{sanitized}"
    return sanitized


def _latency_to_dict(stats: LatencyStats) -> Dict[str, Any]:
    data = {field: getattr(stats, field) for field in _LATENCY_FIELDS}
    data["alert_threshold_ms"] = stats.alert_threshold_ms
    data["performance_status"] = stats.performance_status.value
    data["histogram"] = stats.histogram.as_dict()
    return data


# ============================================================
# JSON
# ============================================================

def export_json(snapshot: MetricsSnapshot) -> Dict[str, Any]:
    """Structured export; every value is JSON-serializable."""
    return {
        "timestamp": snapshot.timestamp.isoformat(),
        "counters": dict(snapshot.counters),
        "gauges": dict(snapshot.gauges),
        "latency": {
            name: _latency_to_dict(stats)
            for name, stats in snapshot.latency_stats.items()
        },
        "aggregates": {
            period: {
                name: {
                    "period_start": agg.period_start.isoformat(),
                    "period_end": agg.period_end.isoformat(),
                    "count": agg.count,
                    "sum": agg.sum,
                    "average": agg.average,
                    "minimum": agg.minimum,
                    "maximum": agg.maximum,
                }
                for name, agg in aggregates.items()
            }
            for period, aggregates in snapshot.aggregated_metrics.items()
        },
    }


# ============================================================
# CSV
# ============================================================

def export_csv(snapshot: MetricsSnapshot) -> str:
    """One row per (metric, field)."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["metric", "type", "field", "value"])

    for name, value in sorted(snapshot.counters.items()):
        writer.writerow([name, "counter", "value", value])

    for name, value in sorted(snapshot.gauges.items()):
        writer.writerow([name, "gauge", "value", value])

    for name, stats in sorted(snapshot.latency_stats.items()):
        for field in _LATENCY_FIELDS:
            writer.writerow([name, "latency", field, getattr(stats, field)])

    return buffer.getvalue()


# ============================================================
# PROMETHEUS
# ============================================================

def export_prometheus(snapshot: MetricsSnapshot) -> str:
    """Prometheus text exposition format."""
    lines: List[str] = []

    for name, value in sorted(snapshot.counters.items()):
        metric = prometheus_name(name)
        lines.append(f"# HELP {metric} Counter {name}")
        lines.append(f"# TYPE {metric} counter")
        lines.append(f"{metric} {value}")

    for name, value in sorted(snapshot.gauges.items()):
        metric = prometheus_name(name)
        lines.append(f"# HELP {metric} Gauge {name}")
        lines.append(f"# TYPE {metric} gauge")
        lines.append(f"{metric} {value}")

    for name, stats in sorted(snapshot.latency_stats.items()):
        metric = prometheus_name(name) + "_seconds"
        lines.append(f"# HELP {metric} Latency {name}")
        lines.append(f"# TYPE {metric} histogram")

        cumulative = 0
        for bound, count in zip(HISTOGRAM_BOUNDS_MICROS, stats.histogram.counts):
            cumulative += count
            le = "+Inf" if math.isinf(bound) else f"{bound / 1_000_000:g}"
            lines.append(f'{metric}_bucket{{le="{le}"}} {cumulative}')

        total_seconds = stats.average * stats.sample_count / 1000.0
        lines.append(f"{metric}_sum {total_seconds:g}")
        lines.append(f"{metric}_count {stats.sample_count}")

    return "\n".join(lines) + "\n" if lines else ""


EXPORTERS: Dict[ExportFormat, Callable[[MetricsSnapshot], Any]] = {
    ExportFormat.JSON: export_json,
    ExportFormat.CSV: export_csv,
    ExportFormat.PROMETHEUS: export_prometheus,
}
