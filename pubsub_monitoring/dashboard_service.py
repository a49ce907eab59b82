"""
Monitoring Facade.

============================================================
PURPOSE
============================================================
Read-only aggregation of collector and alert engine state for
external consumers (dashboards, HTTP handlers, CLI).

PRINCIPLES:
- READ-ONLY: No state mutation
- Assembled on demand, never a source of truth
- A failing sub-query yields an empty default, never a failed view

============================================================
"""

import asyncio
import logging
from typing import Dict, List, Optional

from .alerts import AlertEngine
from .core.clock import ClockProtocol
from .core.exceptions import QueryValidationError
from .metrics import MetricsCollector
from .models import (
    AlertingStats,
    AlertSeverity,
    AlertState,
    HealthStatus,
    LatencyStats,
    MonitoringOverview,
    MonitoringSummary,
    ReadOnlyAccess,
    ThresholdViolation,
    TrendAnalysis,
)


logger = logging.getLogger(__name__)


class MonitoringFacade(ReadOnlyAccess):
    """
    Central read-only view over the monitoring pipeline.

    The facade is a MIRROR: it never records metrics, never
    triggers or resolves alerts.
    """

    def __init__(
        self,
        collector: MetricsCollector,
        alert_engine: Optional[AlertEngine] = None,
        trend_lookback_hours: int = 1,
        clock: Optional[ClockProtocol] = None,
    ):
        """Initialize facade."""
        self._collector = collector
        self._alert_engine = alert_engine
        self._trend_lookback_hours = trend_lookback_hours
        self._clock = clock or collector.clock

    # --------------------------------------------------------
    # MAIN VIEW
    # --------------------------------------------------------

    async def get_overview(self, lookback_hours: Optional[int] = None) -> MonitoringOverview:
        """
        Complete monitoring overview.

        This is the main entry point for dashboard data.

        Raises:
            QueryValidationError: If lookback_hours is not positive
        """
        hours = self._trend_lookback_hours if lookback_hours is None else lookback_hours
        if hours <= 0:
            raise QueryValidationError("lookback_hours must be positive", parameter="lookback_hours", value=hours)

        results = await asyncio.gather(
            self._get_counters(),
            self._get_gauges(),
            self._get_latency_stats(),
            self._get_trends(hours),
            self._get_active_alerts(),
            self._get_alerting_stats(),
            return_exceptions=True,
        )

        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Monitoring overview sub-query failed: {result}")

        counters = results[0] if not isinstance(results[0], Exception) else {}
        gauges = results[1] if not isinstance(results[1], Exception) else {}
        latency = results[2] if not isinstance(results[2], Exception) else {}
        trends = results[3] if not isinstance(results[3], Exception) else {}
        active = results[4] if not isinstance(results[4], Exception) else []
        stats = results[5] if not isinstance(results[5], Exception) else None

        return MonitoringOverview(
            counters=counters,
            gauges=gauges,
            latency_stats=latency,
            trends=trends,
            active_alerts=active,
            alerting_stats=stats,
            generated_at=self._clock.now(),
        )

    # --------------------------------------------------------
    # SUMMARY VIEW
    # --------------------------------------------------------

    async def get_summary(self) -> MonitoringSummary:
        """Compact health summary."""
        results = await asyncio.gather(
            self._get_counters(),
            self._get_gauges(),
            self._get_latency_stats(),
            self._get_active_alerts(),
            self._get_violations(),
            return_exceptions=True,
        )

        counters = results[0] if not isinstance(results[0], Exception) else {}
        gauges = results[1] if not isinstance(results[1], Exception) else {}
        latency = results[2] if not isinstance(results[2], Exception) else {}
        active = results[3] if not isinstance(results[3], Exception) else []
        violations = results[4] if not isinstance(results[4], Exception) else []

        critical = sum(1 for a in active if a.severity == AlertSeverity.CRITICAL)
        warning = sum(1 for a in active if a.severity == AlertSeverity.WARNING)

        return MonitoringSummary(
            health=classify_health(active),
            total_counters=len(counters),
            total_gauges=len(gauges),
            latency_metrics=len(latency),
            active_alerts=len(active),
            critical_alerts=critical,
            warning_alerts=warning,
            threshold_violations=len(violations),
            generated_at=self._clock.now(),
        )

    def check_thresholds(self) -> List[ThresholdViolation]:
        """Current rule violations (no dispatch)."""
        if self._alert_engine is None:
            return []
        return self._alert_engine.check_thresholds()

    # --------------------------------------------------------
    # SUB-QUERIES
    # --------------------------------------------------------

    async def _get_counters(self) -> Dict[str, int]:
        return self._collector.get_current_snapshot().counters

    async def _get_gauges(self) -> Dict[str, float]:
        return self._collector.get_current_snapshot().gauges

    async def _get_latency_stats(self) -> Dict[str, LatencyStats]:
        return self._collector.get_all_latency_stats()

    async def _get_trends(self, hours: int) -> Dict[str, TrendAnalysis]:
        trends = {}
        for name in self._collector.metric_names():
            if self._collector.get_metric_kind(name) is None:
                continue
            try:
                trends[name] = self._collector.analyze_trends(name, hours)
            except Exception as e:
                logger.warning(f"Trend analysis failed for {name}: {e}")
                trends[name] = TrendAnalysis.empty(name, hours)
        return trends

    async def _get_active_alerts(self) -> List[AlertState]:
        if self._alert_engine is None:
            return []
        return self._alert_engine.get_active_alerts()

    async def _get_alerting_stats(self) -> Optional[AlertingStats]:
        if self._alert_engine is None:
            return None
        return self._alert_engine.get_alerting_stats()

    async def _get_violations(self) -> List[ThresholdViolation]:
        return self.check_thresholds()


def classify_health(active_alerts: List[AlertState]) -> HealthStatus:
    """CRITICAL if any critical alert is active, WARNING if any warning."""
    severities = {a.severity for a in active_alerts}
    if AlertSeverity.CRITICAL in severities:
        return HealthStatus.CRITICAL
    if AlertSeverity.WARNING in severities:
        return HealthStatus.WARNING
    return HealthStatus.HEALTHY
