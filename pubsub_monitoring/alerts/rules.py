"""
Alert Rules and Definitions.

============================================================
PURPOSE
============================================================
Threshold rules over single metrics, plus the escalation policy
applied to alerts that stay active.

PRINCIPLES:
- All thresholds are explicit and configurable
- One metric, one operator, one threshold per rule
- Recovery uses a hysteresis margin so a value hovering at the
  threshold does not flap between violating and resolved

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from ..models import (
    AlertSeverity,
    ThresholdOperator,
    DEFAULT_RECOVERY_MARGIN,
)


logger = logging.getLogger(__name__)

# Tolerance used by EQ rules
EQUALITY_TOLERANCE = 0.001


# ============================================================
# ALERT RULE
# ============================================================

@dataclass
class AlertRule:
    """Threshold rule over one metric."""

    name: str
    metric_name: str
    threshold: float
    operator: ThresholdOperator = ThresholdOperator.GT
    severity: AlertSeverity = AlertSeverity.WARNING
    cooldown_minutes: float = 5
    enabled: bool = True
    description: str = ""

    @property
    def cooldown(self) -> timedelta:
        return timedelta(minutes=self.cooldown_minutes)

    def is_violated(self, value: float) -> bool:
        """Whether `value` breaks the rule."""
        if self.operator == ThresholdOperator.GT:
            return value > self.threshold
        if self.operator == ThresholdOperator.LT:
            return value < self.threshold
        return abs(value - self.threshold) < EQUALITY_TOLERANCE

    def is_recovered(self, value: float, margin: float = DEFAULT_RECOVERY_MARGIN) -> bool:
        """
        Whether `value` is back inside the hysteresis margin.

        GT clears at or below threshold - |threshold| * margin,
        LT clears at or above threshold + |threshold| * margin,
        EQ clears once the distance exceeds |threshold| * margin.

        The band uses |threshold| rather than scaling the threshold by
        (1 - margin) or (1 + margin); the two differ only for negative
        thresholds, where scaling would move the clear point past the
        threshold (GT -10 would clear at -9.5, a still violating value).
        """
        band = abs(self.threshold) * margin
        if self.operator == ThresholdOperator.GT:
            return value <= self.threshold - band
        if self.operator == ThresholdOperator.LT:
            return value >= self.threshold + band
        return abs(value - self.threshold) > band

    def describe(self) -> str:
        """Human-readable rule description."""
        text = f"{self.metric_name} {self.operator.symbol} {self.threshold:g}"
        return f"{self.description} ({text})" if self.description else text

    def violation_message(self, value: float) -> str:
        label = self.description or self.name
        return f"{label}: current={value:.2f}, threshold={self.threshold:.2f}"


# ============================================================
# ESCALATION
# ============================================================

@dataclass(frozen=True)
class EscalationLevel:
    """Severity an alert reaches after staying active for `delay_minutes`."""

    delay_minutes: float
    severity: AlertSeverity


@dataclass
class EscalationPolicy:
    """
    Ordered escalation levels.

    Applied only when a still-active alert is re-sent after its
    cooldown; severity only ever moves up.
    """

    name: str = "default"
    levels: List[EscalationLevel] = field(default_factory=lambda: [
        EscalationLevel(delay_minutes=0, severity=AlertSeverity.INFO),
        EscalationLevel(delay_minutes=5, severity=AlertSeverity.WARNING),
        EscalationLevel(delay_minutes=15, severity=AlertSeverity.CRITICAL),
    ])

    def severity_after(self, active_for: timedelta) -> Optional[AlertSeverity]:
        """Highest level severity reached after `active_for`, if any."""
        reached = None
        for level in self.levels:
            if active_for >= timedelta(minutes=level.delay_minutes):
                if reached is None or level.severity.rank > reached.rank:
                    reached = level.severity
        return reached

    def escalate(self, current: AlertSeverity, active_for: timedelta) -> AlertSeverity:
        """`current`, or the level severity if that is higher."""
        reached = self.severity_after(active_for)
        if reached is not None and reached.rank > current.rank:
            return reached
        return current


# ============================================================
# DEFAULT RULES
# ============================================================

def get_default_rules() -> List[AlertRule]:
    """Get default set of alert rules."""
    return [
        AlertRule(
            name="high_error_rate",
            metric_name="messages.processed.failed",
            threshold=10,
            operator=ThresholdOperator.GT,
            severity=AlertSeverity.CRITICAL,
            cooldown_minutes=5,
            description="High message processing failure count",
        ),
        AlertRule(
            name="high_latency",
            metric_name="message.processing.latency",
            threshold=5000,
            operator=ThresholdOperator.GT,
            severity=AlertSeverity.WARNING,
            cooldown_minutes=2,
            description="Message processing latency above 5s",
        ),
        AlertRule(
            name="high_memory_usage",
            metric_name="memory.usage",
            threshold=0.85,
            operator=ThresholdOperator.GT,
            severity=AlertSeverity.WARNING,
            cooldown_minutes=10,
            description="Memory usage above 85%",
        ),
        AlertRule(
            name="connection_failure",
            metric_name="connections.failed",
            threshold=5,
            operator=ThresholdOperator.GT,
            severity=AlertSeverity.CRITICAL,
            cooldown_minutes=1,
            description="Repeated connection failures",
        ),
    ]
