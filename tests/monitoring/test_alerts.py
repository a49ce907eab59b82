"""
Tests for alert rules and the alert engine.

============================================================
PURPOSE
============================================================
- Rule comparison, hysteresis and escalation levels
- Deduplication inside the cooldown window
- Auto-recovery and manual resolve
- Failure isolation across rules and channels

============================================================
"""

import asyncio
from datetime import timedelta
from typing import List

import pytest

from pubsub_monitoring.alerts.manager import AlertEngine, AlertHistory
from pubsub_monitoring.alerts.rules import (
    AlertRule,
    EscalationLevel,
    EscalationPolicy,
    get_default_rules,
)
from pubsub_monitoring.core.exceptions import QueryValidationError
from pubsub_monitoring.metrics.collector import MetricsCollector
from pubsub_monitoring.models import (
    Alert,
    AlertAction,
    AlertEvent,
    AlertSeverity,
    ThresholdOperator,
)
from pubsub_monitoring.notifications.channels import NotificationChannel


# ============================================================
# FAKES & FIXTURES
# ============================================================

class RecordingChannel(NotificationChannel):
    """Channel that keeps every alert it receives."""

    def __init__(self, name: str = "recording"):
        self._name = name
        self.received: List[Alert] = []

    @property
    def name(self) -> str:
        return self._name

    async def send(self, alert: Alert) -> None:
        self.received.append(alert)


class FailingChannel(NotificationChannel):
    """Channel whose send always raises."""

    @property
    def name(self) -> str:
        return "failing"

    async def send(self, alert: Alert) -> None:
        raise ConnectionError("channel down")


class BrokenFilterChannel(NotificationChannel):
    """Channel whose should_send raises."""

    def __init__(self):
        self.sent = 0

    @property
    def name(self) -> str:
        return "broken_filter"

    def should_send(self, alert: Alert) -> bool:
        raise ValueError("bad filter")

    async def send(self, alert: Alert) -> None:
        self.sent += 1


class SlowChannel(NotificationChannel):
    """Channel that blocks until released."""

    def __init__(self):
        self.release = asyncio.Event()
        self.delivered = 0

    @property
    def name(self) -> str:
        return "slow"

    async def send(self, alert: Alert) -> None:
        await self.release.wait()
        self.delivered += 1


class ExplodingSource:
    """Metric source that fails for one metric."""

    def __init__(self, bad_metric: str, values: dict):
        self.bad_metric = bad_metric
        self.values = values

    def get_current_value(self, name):
        if name == self.bad_metric:
            raise RuntimeError("source failure")
        return self.values.get(name)


@pytest.fixture
def rule():
    return AlertRule(
        name="x_high",
        metric_name="x",
        threshold=10,
        operator=ThresholdOperator.GT,
        severity=AlertSeverity.WARNING,
        cooldown_minutes=5,
    )


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def engine(rule, channel, clock):
    return AlertEngine(rules=[rule], channels=[channel], clock=clock)


# ============================================================
# RULES
# ============================================================

class TestAlertRule:
    """Tests for AlertRule comparisons."""

    def test_gt(self, rule):
        assert rule.is_violated(10.5)
        assert not rule.is_violated(10)

    def test_lt(self):
        rule = AlertRule("low", "x", 10, ThresholdOperator.LT)

        assert rule.is_violated(9.99)
        assert not rule.is_violated(10)

    def test_eq_uses_tolerance(self):
        rule = AlertRule("eq", "x", 5, ThresholdOperator.EQ)

        assert rule.is_violated(5.0005)
        assert not rule.is_violated(5.002)

    def test_gt_recovery_needs_margin(self, rule):
        # Band is 10% of 10
        assert not rule.is_recovered(9.5, 0.1)
        assert rule.is_recovered(9.0, 0.1)
        assert rule.is_recovered(8, 0.1)

    def test_lt_recovery_needs_margin(self):
        rule = AlertRule("low", "x", 100, ThresholdOperator.LT)

        assert not rule.is_recovered(105, 0.1)
        assert rule.is_recovered(110, 0.1)

    def test_eq_recovery(self):
        rule = AlertRule("eq", "x", 5, ThresholdOperator.EQ)

        assert not rule.is_recovered(5.3, 0.1)
        assert rule.is_recovered(5.6, 0.1)

    @pytest.mark.parametrize("operator,cleared,held", [
        (ThresholdOperator.GT, -11, -9.5),
        (ThresholdOperator.LT, -9, -10.5),
        (ThresholdOperator.EQ, -11.5, -10.5),
    ])
    def test_negative_threshold_recovery(self, operator, cleared, held):
        rule = AlertRule("neg", "x", -10, operator)

        assert rule.is_recovered(cleared, 0.1)
        assert not rule.is_recovered(held, 0.1)

    def test_describe_and_message(self, rule):
        assert rule.describe() == "x > 10"
        assert rule.violation_message(15) == "x_high: current=15.00, threshold=10.00"

    def test_default_rules(self):
        rules = {r.name: r for r in get_default_rules()}

        assert set(rules) == {"high_error_rate", "high_latency", "high_memory_usage", "connection_failure"}
        assert rules["high_error_rate"].severity == AlertSeverity.CRITICAL
        assert rules["high_latency"].threshold == 5000
        assert rules["high_memory_usage"].cooldown == timedelta(minutes=10)


class TestEscalationPolicy:
    """Tests for EscalationPolicy."""

    def test_default_levels(self):
        policy = EscalationPolicy()

        assert policy.severity_after(timedelta(0)) == AlertSeverity.INFO
        assert policy.severity_after(timedelta(minutes=5)) == AlertSeverity.WARNING
        assert policy.severity_after(timedelta(minutes=15)) == AlertSeverity.CRITICAL

    def test_never_downgrades(self):
        policy = EscalationPolicy()

        assert policy.escalate(AlertSeverity.CRITICAL, timedelta(0)) == AlertSeverity.CRITICAL
        assert policy.escalate(AlertSeverity.WARNING, timedelta(minutes=1)) == AlertSeverity.WARNING
        assert policy.escalate(AlertSeverity.WARNING, timedelta(minutes=20)) == AlertSeverity.CRITICAL

    def test_custom_levels(self):
        policy = EscalationPolicy(
            name="fast",
            levels=[EscalationLevel(delay_minutes=1, severity=AlertSeverity.CRITICAL)],
        )

        assert policy.severity_after(timedelta(seconds=30)) is None
        assert policy.escalate(AlertSeverity.INFO, timedelta(minutes=1)) == AlertSeverity.CRITICAL


class TestAlertHistory:
    """Tests for AlertHistory."""

    def test_bounded_newest_first(self, clock):
        history = AlertHistory(max_size=3)
        for i in range(5):
            alert = Alert(f"id{i}", "r", f"m{i}", AlertSeverity.INFO, clock.now())
            history.add(AlertEvent(alert=alert, action=AlertAction.SENT, timestamp=clock.now()))

        recent = history.get_recent(10)

        assert len(history) == 3
        assert [e.alert.message for e in recent] == ["m4", "m3", "m2"]
        assert history.get_recent(0) == []


# ============================================================
# EVALUATION
# ============================================================

class TestEvaluate:
    """Tests for AlertEngine.evaluate."""

    @pytest.mark.asyncio
    async def test_violation_dispatches_once_then_recovers(self, engine, channel, clock):
        """x=15 raises, second x=15 is deduped, x=8 resolves."""
        first = await engine.evaluate({"x": 15})
        clock.advance(minutes=1)
        second = await engine.evaluate({"x": 15})
        await engine.drain()

        assert len(first) == 1
        assert second == []
        assert len(channel.received) == 1
        alert = channel.received[0]
        assert alert.rule_name == "x_high"
        assert alert.severity == AlertSeverity.WARNING
        assert alert.current_value == 15
        assert alert.threshold_value == 10
        assert alert.source == "threshold_monitor"

        state = engine.get_active_alerts()[0]
        assert state.count == 1
        assert state.last_triggered_time == clock.now()

        recovered = await engine.check_auto_recovery({"x": 8})
        await engine.drain()

        assert recovered == ["x_high"]
        assert engine.get_active_alerts() == []
        assert channel.received[-1].resolved
        assert channel.received[-1].severity == AlertSeverity.INFO
        assert engine.get_recent_alerts(1)[0].action == AlertAction.RESOLVED

    @pytest.mark.asyncio
    async def test_value_inside_margin_stays_active(self, engine):
        await engine.evaluate({"x": 15})
        await engine.drain()

        assert await engine.check_auto_recovery({"x": 9.5}) == []
        assert len(engine.get_active_alerts()) == 1

    @pytest.mark.asyncio
    async def test_resend_after_cooldown(self, engine, channel, clock):
        await engine.evaluate({"x": 15})
        clock.advance(minutes=6)
        again = await engine.evaluate({"x": 15})
        await engine.drain()

        assert len(again) == 1
        assert len(channel.received) == 2
        assert engine.get_active_alerts()[0].count == 2

    @pytest.mark.asyncio
    async def test_escalates_after_fifteen_minutes(self, engine, channel, clock):
        await engine.evaluate({"x": 15})
        clock.advance(minutes=6)
        await engine.evaluate({"x": 15})
        clock.advance(minutes=10)
        await engine.evaluate({"x": 15})
        await engine.drain()

        assert [a.severity for a in channel.received] == [
            AlertSeverity.WARNING, AlertSeverity.WARNING, AlertSeverity.CRITICAL,
        ]
        assert engine.get_active_alerts()[0].severity == AlertSeverity.CRITICAL

        actions = [e.action for e in engine.get_recent_alerts(2)]
        assert actions == [AlertAction.ESCALATED, AlertAction.SENT]
        assert engine.get_alerting_stats().total_escalated == 1

    @pytest.mark.asyncio
    async def test_disabled_rule_skipped(self, engine, channel):
        engine.disable_rule("x_high")

        assert await engine.evaluate({"x": 15}) == []
        assert engine.check_thresholds({"x": 15}) == []

        engine.enable_rule("x_high")
        assert len(await engine.evaluate({"x": 15})) == 1
        await engine.drain()

    @pytest.mark.asyncio
    async def test_disabled_engine_does_nothing(self, engine, channel):
        engine.disable()

        assert await engine.evaluate({"x": 15}) == []
        assert engine.get_alerting_stats().total_generated == 0

        engine.enable()
        assert engine.enabled

    @pytest.mark.asyncio
    async def test_missing_value_not_evaluated(self, engine):
        assert await engine.evaluate({}) == []

    @pytest.mark.asyncio
    async def test_reads_values_from_collector(self, rule, channel, clock, bare_config):
        collector = MetricsCollector(bare_config, clock=clock)
        collector.set_gauge("x", 42)
        engine = AlertEngine(collector, rules=[rule], channels=[channel], clock=clock)

        await engine.run_checks()
        await engine.drain()

        assert len(channel.received) == 1
        assert channel.received[0].current_value == 42

    @pytest.mark.asyncio
    async def test_gauge_violation_and_recovery_through_collector(self, channel, clock, bare_config):
        """Gauge x=15 breaks x > 10, x=8 clears it; values come only from the collector."""
        collector = MetricsCollector(bare_config, clock=clock)
        rule = AlertRule("x_high", "x", 10, ThresholdOperator.GT, cooldown_minutes=0)
        engine = AlertEngine(collector, rules=[rule], channels=[channel], clock=clock)

        collector.set_gauge("x", 15)
        violations = engine.check_thresholds()

        assert len(violations) == 1
        assert violations[0].current_value == 15
        assert violations[0].threshold_value == 10
        assert engine.get_active_alerts() == []

        await engine.evaluate()
        await engine.drain()
        assert [s.rule_name for s in engine.get_active_alerts()] == ["x_high"]

        collector.set_gauge("x", 8)
        recovered = await engine.check_auto_recovery()
        await engine.drain()

        assert recovered == ["x_high"]
        assert engine.get_active_alerts() == []
        assert engine.check_thresholds() == []
        assert [a.resolved for a in channel.received] == [False, True]

    @pytest.mark.asyncio
    async def test_rule_fault_does_not_stop_other_rules(self, rule, channel, clock):
        other = AlertRule("y_high", "y", 1)
        source = ExplodingSource("x", {"y": 5})
        engine = AlertEngine(source, rules=[rule, other], channels=[channel], clock=clock)

        dispatched = await engine.evaluate()
        await engine.drain()

        assert [a.rule_name for a in dispatched] == ["y_high"]
        assert engine.get_alerting_stats().evaluation_errors == 1

    def test_check_thresholds_is_pure(self, engine, clock):
        violations = engine.check_thresholds({"x": 15})

        assert len(violations) == 1
        assert violations[0].rule_name == "x_high"
        assert violations[0].current_value == 15
        assert violations[0].timestamp == clock.now()
        assert engine.get_active_alerts() == []
        assert engine.get_alerting_stats().total_generated == 0

    def test_empty_rule_list_stays_empty(self, clock):
        assert AlertEngine(rules=[], clock=clock).rules == []

    def test_default_rules_when_omitted(self, clock):
        assert len(AlertEngine(clock=clock).rules) == 4


# ============================================================
# DISPATCH
# ============================================================

class TestDispatch:
    """Tests for channel delivery."""

    @pytest.mark.asyncio
    async def test_failing_channel_isolated(self, rule, clock):
        good = RecordingChannel()
        engine = AlertEngine(rules=[rule], channels=[FailingChannel(), good], clock=clock)

        await engine.evaluate({"x": 15})
        await engine.drain()

        stats = engine.get_alerting_stats()
        assert len(good.received) == 1
        assert stats.dispatch_failures == 1
        assert stats.total_sent == 1

    @pytest.mark.asyncio
    async def test_should_send_fault_isolated(self, rule, channel, clock):
        broken = BrokenFilterChannel()
        engine = AlertEngine(rules=[rule], channels=[broken, channel], clock=clock)

        await engine.evaluate({"x": 15})
        await engine.drain()

        assert broken.sent == 0
        assert len(channel.received) == 1
        assert engine.get_alerting_stats().dispatch_failures == 1

    @pytest.mark.asyncio
    async def test_evaluate_does_not_wait_for_delivery(self, rule, clock):
        slow = SlowChannel()
        engine = AlertEngine(rules=[rule], channels=[slow], clock=clock)

        dispatched = await engine.evaluate({"x": 15})

        assert len(dispatched) == 1
        assert slow.delivered == 0

        slow.release.set()
        await engine.drain()
        assert slow.delivered == 1

    @pytest.mark.asyncio
    async def test_add_channel_replaces_by_name(self, engine, channel):
        replacement = RecordingChannel()
        engine.add_channel(replacement)

        await engine.evaluate({"x": 15})
        await engine.drain()

        assert len(engine.channels) == 1
        assert channel.received == []
        assert len(replacement.received) == 1
        assert engine.remove_channel("recording")
        assert not engine.remove_channel("recording")


# ============================================================
# MANUAL TRIGGERS & QUERIES
# ============================================================

class TestManualAlerts:
    """Tests for send_alert and resolve_alert."""

    @pytest.mark.asyncio
    async def test_send_alert_uses_rule_cooldown(self, engine, channel):
        assert await engine.send_alert("x_high", "operator check", AlertSeverity.CRITICAL)
        assert not await engine.send_alert("x_high", "operator check", AlertSeverity.CRITICAL)
        await engine.drain()

        assert len(channel.received) == 1
        assert channel.received[0].source == "manual"
        assert channel.received[0].severity == AlertSeverity.CRITICAL

    @pytest.mark.asyncio
    async def test_send_alert_without_rule(self, engine, channel):
        assert await engine.send_alert("ad_hoc", "first", AlertSeverity.INFO)
        assert await engine.send_alert("ad_hoc", "second", AlertSeverity.INFO)
        await engine.drain()

        assert [a.message for a in channel.received] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_resolve_alert(self, engine, channel):
        await engine.evaluate({"x": 15})

        assert await engine.resolve_alert("x_high")
        assert not await engine.resolve_alert("x_high")
        await engine.drain()

        resolved = channel.received[-1]
        assert resolved.message == "x_high: problem resolved"
        assert resolved.source == "system"
        assert engine.get_alerting_stats().total_resolved == 1

    @pytest.mark.asyncio
    async def test_add_rule_takes_effect(self, engine, channel):
        engine.add_rule(AlertRule("queue_low", "queue.size", 5, ThresholdOperator.LT, AlertSeverity.CRITICAL))

        dispatched = await engine.evaluate({"x": 1, "queue.size": 2})
        await engine.drain()

        assert [a.rule_name for a in dispatched] == ["queue_low"]
        assert engine.get_rule("queue_low").operator == ThresholdOperator.LT
        assert engine.get_rule("missing") is None
        assert engine.history.count(AlertAction.SENT) == 1

    @pytest.mark.asyncio
    async def test_remove_rule_drops_active_state(self, engine):
        await engine.evaluate({"x": 15})
        await engine.drain()

        assert engine.remove_rule("x_high")
        assert engine.get_active_alerts() == []
        assert not engine.remove_rule("x_high")

    @pytest.mark.asyncio
    async def test_active_alerts_are_copies(self, engine):
        await engine.evaluate({"x": 15})
        await engine.drain()

        engine.get_active_alerts()[0].count = 99

        assert engine.get_active_alerts()[0].count == 1


class TestQueries:
    """Tests for history and stats."""

    @pytest.mark.asyncio
    async def test_history_bounded(self, rule, clock):
        rule.cooldown_minutes = 0
        engine = AlertEngine(rules=[rule], clock=clock, history_size=5)

        for _ in range(8):
            await engine.evaluate({"x": 15})
            clock.advance(seconds=1)

        assert len(engine.history) == 5
        assert len(engine.get_recent_alerts(100)) == 5

    def test_negative_count_rejected(self, engine):
        with pytest.raises(QueryValidationError):
            engine.get_recent_alerts(-1)

    @pytest.mark.asyncio
    async def test_stats(self, engine, clock):
        await engine.evaluate({"x": 15})
        await engine.evaluate({"x": 15})
        await engine.drain()

        stats = engine.get_alerting_stats()

        assert stats.total_generated == 2
        assert stats.total_suppressed == 1
        assert stats.total_sent == 1
        assert stats.active_alerts == 1
        assert stats.alert_rules == 1
        assert stats.alert_channels == 1
        assert len(stats.recent_alerts) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
