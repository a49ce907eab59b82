"""
Notification Channels.

============================================================
PURPOSE
============================================================
Pluggable alert delivery targets.

A channel is anything with:
- name          unique, used in logs and stats
- should_send   cheap filter, evaluated before dispatch
- send          async delivery; raise to report failure

The engine isolates every channel: one raising channel never stops
delivery to the others.

============================================================
"""

import logging
import sys
from abc import ABC, abstractmethod
from typing import TextIO, Optional

from ..models import Alert, AlertSeverity


logger = logging.getLogger(__name__)

ALERT_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

SEVERITY_ICONS = {
    AlertSeverity.INFO: "ℹ️",
    AlertSeverity.WARNING: "⚠️",
    AlertSeverity.CRITICAL: "🚨",
}


class NotificationChannel(ABC):
    """Base class for alert delivery channels."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Channel name."""
        pass

    def should_send(self, alert: Alert) -> bool:
        """Whether this channel wants `alert`. Defaults to every alert."""
        return True

    @abstractmethod
    async def send(self, alert: Alert) -> None:
        """Deliver `alert`. Raise on failure."""
        pass


# ============================================================
# LOG CHANNEL
# ============================================================

class LogChannel(NotificationChannel):
    """Writes every alert to the log at a level matching its severity."""

    def __init__(self, channel_logger: Optional[logging.Logger] = None):
        self._logger = channel_logger or logging.getLogger("pubsub_monitoring.alerts")

    @property
    def name(self) -> str:
        return "log"

    async def send(self, alert: Alert) -> None:
        message = (
            f"[ALERT] {alert.severity.value} | {alert.rule_name} | "
            f"{alert.message} | {alert.timestamp.strftime(ALERT_TIME_FORMAT)}"
        )

        if alert.severity == AlertSeverity.CRITICAL:
            self._logger.error(message)
        elif alert.severity == AlertSeverity.WARNING:
            self._logger.warning(message)
        else:
            self._logger.info(message)


# ============================================================
# CONSOLE CHANNEL
# ============================================================

class ConsoleChannel(NotificationChannel):
    """Prints WARNING and CRITICAL alerts to a stream."""

    def __init__(self, stream: Optional[TextIO] = None):
        self._stream = stream

    @property
    def name(self) -> str:
        return "console"

    def should_send(self, alert: Alert) -> bool:
        return alert.severity != AlertSeverity.INFO

    async def send(self, alert: Alert) -> None:
        stream = self._stream or sys.stdout
        icon = SEVERITY_ICONS.get(alert.severity, "📌")
        print(
            f"{icon} [{alert.timestamp.strftime(ALERT_TIME_FORMAT)}] "
            f"{alert.rule_name}: {alert.message}",
            file=stream,
        )
