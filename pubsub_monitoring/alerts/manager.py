"""
Alert Engine.

============================================================
PURPOSE
============================================================
Evaluates threshold rules, tracks active alerts, and dispatches
notifications.

LIFECYCLE (per rule):
  Normal -> Violating -> (cooldown-suppressed repeats) -> Resolved -> Normal

PRINCIPLES:
- At most one active AlertState per rule name
- A repeat inside the cooldown window is deduplicated: no dispatch,
  no history entry
- A fault in one rule never aborts the evaluation pass
- A fault in one channel never blocks the other channels
- Delivery is fire-and-forget, best effort, no retry queue

============================================================
"""

import asyncio
import itertools
import logging
from collections import deque
from dataclasses import replace
from typing import Deque, Dict, List, Mapping, Optional, Protocol, Set

from ..core.clock import ClockProtocol, SystemClock
from ..core.exceptions import QueryValidationError, RuleEvaluationError
from ..models import (
    Alert,
    AlertAction,
    AlertEvent,
    AlertingStats,
    AlertSeverity,
    AlertState,
    ThresholdViolation,
    ALERT_HISTORY_MAX_SIZE,
    DEFAULT_RECOVERY_MARGIN,
)
from ..notifications.channels import NotificationChannel
from .rules import AlertRule, EscalationPolicy, get_default_rules


logger = logging.getLogger(__name__)

RECENT_EVENTS_IN_STATS = 10


class MetricValueSource(Protocol):
    """Anything that can report the current value of a metric."""

    def get_current_value(self, name: str) -> Optional[float]:
        ...


# ============================================================
# ALERT HISTORY
# ============================================================

class AlertHistory:
    """
    Bounded ring buffer of alert events.

    The oldest event is evicted first once full.
    """

    def __init__(self, max_size: int = ALERT_HISTORY_MAX_SIZE):
        """Initialize alert history."""
        self._events: Deque[AlertEvent] = deque(maxlen=max_size)

    def add(self, event: AlertEvent) -> None:
        """Add event to history."""
        self._events.append(event)

    def get_recent(self, limit: int = 100) -> List[AlertEvent]:
        """Get recent events, newest first."""
        if limit <= 0:
            return []
        events = list(self._events)
        return events[-limit:][::-1]

    def count(self, action: AlertAction) -> int:
        return sum(1 for e in self._events if e.action == action)

    def __len__(self) -> int:
        return len(self._events)


# ============================================================
# ALERT ENGINE
# ============================================================

class AlertEngine:
    """
    Holds rules, active alerts and history, and dispatches alerts.

    This is the central alert coordination point.
    """

    def __init__(
        self,
        collector: Optional[MetricValueSource] = None,
        rules: Optional[List[AlertRule]] = None,
        channels: Optional[List[NotificationChannel]] = None,
        clock: Optional[ClockProtocol] = None,
        history_size: int = ALERT_HISTORY_MAX_SIZE,
        recovery_margin: float = DEFAULT_RECOVERY_MARGIN,
        escalation_policy: Optional[EscalationPolicy] = None,
    ):
        """
        Initialize alert engine.

        Args:
            collector: Source of current metric values
            rules: Alert rules (default rule set if None)
            channels: Notification channels, in dispatch order
            clock: Clock for timestamps and cooldowns
            history_size: Alert events retained
            recovery_margin: Hysteresis margin for auto-recovery
            escalation_policy: Escalation levels for long-lived alerts
        """
        self._collector = collector
        self._clock = clock or SystemClock()
        self._recovery_margin = recovery_margin
        self._escalation = escalation_policy or EscalationPolicy()

        rule_list = get_default_rules() if rules is None else rules
        self._rules: Dict[str, AlertRule] = {rule.name: rule for rule in rule_list}
        self._channels: List[NotificationChannel] = list(channels or [])

        self._active: Dict[str, AlertState] = {}
        self._history = AlertHistory(history_size)
        self._enabled = True

        # Statistics
        self._total_generated = 0
        self._total_sent = 0
        self._total_resolved = 0
        self._total_suppressed = 0
        self._total_escalated = 0
        self._dispatch_failures = 0
        self._evaluation_errors = 0

        self._ids = itertools.count(1)
        self._pending: Set[asyncio.Task] = set()

        # Evaluation lock
        self._eval_lock = asyncio.Lock()

    @property
    def history(self) -> AlertHistory:
        return self._history

    @property
    def rules(self) -> List[AlertRule]:
        return list(self._rules.values())

    @property
    def channels(self) -> List[NotificationChannel]:
        return list(self._channels)

    @property
    def enabled(self) -> bool:
        return self._enabled

    # ============================================================
    # RULE & CHANNEL MANAGEMENT
    # ============================================================

    def add_rule(self, rule: AlertRule) -> None:
        """Add a rule, replacing any rule with the same name."""
        self._rules[rule.name] = rule
        logger.info(f"Alert rule registered: {rule.name} ({rule.describe()})")

    def remove_rule(self, rule_name: str) -> bool:
        """Remove a rule and drop its active alert, if any."""
        rule = self._rules.pop(rule_name, None)
        if rule is None:
            return False
        self._active.pop(rule_name, None)
        return True

    def get_rule(self, rule_name: str) -> Optional[AlertRule]:
        return self._rules.get(rule_name)

    def enable_rule(self, rule_name: str) -> bool:
        """Enable a rule."""
        rule = self._rules.get(rule_name)
        if rule:
            rule.enabled = True
            return True
        return False

    def disable_rule(self, rule_name: str) -> bool:
        """Disable a rule."""
        rule = self._rules.get(rule_name)
        if rule:
            rule.enabled = False
            return True
        return False

    def add_channel(self, channel: NotificationChannel) -> None:
        """Add a channel, replacing any channel with the same name."""
        self._channels = [c for c in self._channels if c.name != channel.name]
        self._channels.append(channel)
        logger.info(f"Alert channel registered: {channel.name}")

    def remove_channel(self, channel_name: str) -> bool:
        before = len(self._channels)
        self._channels = [c for c in self._channels if c.name != channel_name]
        return len(self._channels) < before

    def enable(self) -> None:
        """Enable alert engine."""
        self._enabled = True

    def disable(self) -> None:
        """Disable alert engine."""
        self._enabled = False

    # ============================================================
    # EVALUATION
    # ============================================================

    def check_thresholds(
        self,
        metric_values: Optional[Mapping[str, float]] = None,
    ) -> List[ThresholdViolation]:
        """
        Current violations of every enabled rule.

        Pure read: no state changes, no dispatch.
        """
        violations = []
        now = self._clock.now()

        for rule in list(self._rules.values()):
            if not rule.enabled:
                continue
            try:
                value = self._current_value(rule.metric_name, metric_values)
                if value is not None and rule.is_violated(value):
                    violations.append(ThresholdViolation(
                        metric_name=rule.metric_name,
                        current_value=value,
                        threshold_value=rule.threshold,
                        operator=rule.operator,
                        severity=rule.severity,
                        timestamp=now,
                        rule_name=rule.name,
                    ))
            except Exception as e:
                logger.error(RuleEvaluationError(rule.name, e).to_log_format())

        return violations

    async def evaluate(
        self,
        metric_values: Optional[Mapping[str, float]] = None,
    ) -> List[Alert]:
        """
        Evaluate every enabled rule and dispatch new alerts.

        Args:
            metric_values: Optional metric name -> value snapshot; the
                collector is consulted for names it lacks

        Returns:
            Alerts dispatched in this pass
        """
        if not self._enabled:
            return []

        async with self._eval_lock:
            dispatched = []

            for rule in list(self._rules.values()):
                if not rule.enabled:
                    continue

                try:
                    value = self._current_value(rule.metric_name, metric_values)
                    if value is None or not rule.is_violated(value):
                        continue

                    alert = self._build_alert(
                        rule_name=rule.name,
                        message=rule.violation_message(value),
                        severity=rule.severity,
                        source="threshold_monitor",
                        metric_name=rule.metric_name,
                        current_value=value,
                        threshold_value=rule.threshold,
                    )
                    if self._process_alert(alert):
                        dispatched.append(alert)

                except Exception as e:
                    self._evaluation_errors += 1
                    logger.error(RuleEvaluationError(rule.name, e).to_log_format())

            return dispatched

    async def check_auto_recovery(
        self,
        metric_values: Optional[Mapping[str, float]] = None,
    ) -> List[str]:
        """
        Resolve active alerts whose metric is back inside the margin.

        Returns:
            Names of the rules resolved
        """
        if not self._enabled:
            return []

        async with self._eval_lock:
            recovered = []

            for rule_name in list(self._active):
                rule = self._rules.get(rule_name)
                if rule is None:
                    continue
                try:
                    value = self._current_value(rule.metric_name, metric_values)
                    if value is not None and rule.is_recovered(value, self._recovery_margin):
                        recovered.append(rule_name)
                except Exception as e:
                    self._evaluation_errors += 1
                    logger.error(RuleEvaluationError(rule_name, e).to_log_format())

            for rule_name in recovered:
                self._resolve(rule_name)

            return recovered

    async def run_checks(self) -> None:
        """One scheduled pass: evaluate, then auto-recover."""
        await self.evaluate()
        await self.check_auto_recovery()

    # ============================================================
    # MANUAL TRIGGERS
    # ============================================================

    async def send_alert(
        self,
        rule_name: str,
        message: str,
        severity: AlertSeverity,
    ) -> bool:
        """
        Manually raise an alert.

        Follows the same dedup path as rule violations.

        Returns:
            True if dispatched, False if suppressed as a duplicate
        """
        alert = self._build_alert(
            rule_name=rule_name,
            message=message,
            severity=severity,
            source="manual",
        )
        async with self._eval_lock:
            return self._process_alert(alert)

    async def resolve_alert(self, rule_name: str) -> bool:
        """
        Manually clear the active alert of `rule_name`.

        Returns:
            True if an active alert was resolved
        """
        async with self._eval_lock:
            return self._resolve(rule_name)

    async def drain(self) -> None:
        """Wait for every in-flight channel delivery to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ============================================================
    # QUERIES
    # ============================================================

    def get_active_alerts(self) -> List[AlertState]:
        """Copies of the active alert states."""
        return [replace(state) for state in self._active.values()]

    def get_recent_alerts(self, count: int) -> List[AlertEvent]:
        """The `count` most recent events, newest first."""
        if count < 0:
            raise QueryValidationError("count must not be negative", parameter="count", value=count)
        return self._history.get_recent(count)

    def get_alerting_stats(self) -> AlertingStats:
        return AlertingStats(
            total_generated=self._total_generated,
            total_sent=self._total_sent,
            total_resolved=self._total_resolved,
            total_suppressed=self._total_suppressed,
            total_escalated=self._total_escalated,
            dispatch_failures=self._dispatch_failures,
            evaluation_errors=self._evaluation_errors,
            active_alerts=len(self._active),
            alert_rules=len(self._rules),
            alert_channels=len(self._channels),
            recent_alerts=self._history.get_recent(RECENT_EVENTS_IN_STATS),
        )

    # ============================================================
    # INTERNAL
    # ============================================================

    def _current_value(
        self,
        metric_name: str,
        metric_values: Optional[Mapping[str, float]],
    ) -> Optional[float]:
        if metric_values is not None and metric_name in metric_values:
            return metric_values[metric_name]
        if self._collector is None:
            return None
        return self._collector.get_current_value(metric_name)

    def _build_alert(self, rule_name: str, message: str, severity: AlertSeverity, **kwargs) -> Alert:
        now = self._clock.now()
        return Alert(
            alert_id=f"{rule_name}_{int(now.timestamp())}_{next(self._ids)}",
            rule_name=rule_name,
            message=message,
            severity=severity,
            timestamp=now,
            **kwargs,
        )

    def _process_alert(self, alert: Alert) -> bool:
        """Dedup, register, escalate, dispatch, record. Caller holds the lock."""
        self._total_generated += 1
        now = self._clock.now()
        rule = self._rules.get(alert.rule_name)
        state = self._active.get(alert.rule_name)

        if state is not None and rule is not None and now < state.last_sent_time + rule.cooldown:
            state.last_triggered_time = now
            self._total_suppressed += 1
            logger.debug(f"Duplicate alert suppressed: {alert.rule_name}")
            return False

        escalated = False
        if state is None:
            state = AlertState(
                rule_name=alert.rule_name,
                first_triggered_time=now,
                last_triggered_time=now,
                last_sent_time=now,
                count=1,
                severity=alert.severity,
            )
            self._active[alert.rule_name] = state
        else:
            state.count += 1
            state.last_triggered_time = now
            state.last_sent_time = now

            target = self._escalation.escalate(state.severity, now - state.first_triggered_time)
            escalated = target.rank > state.severity.rank
            if alert.severity.rank > target.rank:
                target = alert.severity
            state.severity = target
            alert.severity = target

        self._dispatch(alert)
        self._history.add(AlertEvent(alert=alert, action=AlertAction.SENT, timestamp=now))
        logger.info(f"Alert sent: {alert.rule_name} [{alert.severity.value}] {alert.message}")

        if escalated:
            self._total_escalated += 1
            self._history.add(AlertEvent(alert=alert, action=AlertAction.ESCALATED, timestamp=now))
            logger.warning(
                f"Alert escalated: {alert.rule_name} -> {alert.severity.value} "
                f"(active since {state.first_triggered_time.isoformat()}, count={state.count})"
            )

        return True

    def _resolve(self, rule_name: str) -> bool:
        """Clear the active state and announce it. Caller holds the lock."""
        state = self._active.pop(rule_name, None)
        if state is None:
            return False

        self._total_resolved += 1
        resolved_alert = self._build_alert(
            rule_name=rule_name,
            message=f"{rule_name}: problem resolved",
            severity=AlertSeverity.INFO,
            source="system",
            resolved=True,
        )

        self._dispatch(resolved_alert)
        self._history.add(AlertEvent(
            alert=resolved_alert,
            action=AlertAction.RESOLVED,
            timestamp=resolved_alert.timestamp,
        ))
        logger.info(f"Alert resolved: {rule_name} (after {state.count} notification(s))")
        return True

    def _dispatch(self, alert: Alert) -> None:
        """Schedule delivery to every interested channel and return."""
        for channel in list(self._channels):
            try:
                wanted = channel.should_send(alert)
            except Exception as e:
                self._dispatch_failures += 1
                logger.error(f"Channel {channel.name} filter failed for {alert.rule_name}: {e}")
                continue

            if wanted:
                task = asyncio.create_task(self._deliver(channel, alert))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)

    async def _deliver(self, channel: NotificationChannel, alert: Alert) -> None:
        try:
            await channel.send(alert)
            self._total_sent += 1
        except Exception as e:
            self._dispatch_failures += 1
            logger.error(f"Notification channel {channel.name} failed for {alert.rule_name}: {e}")
