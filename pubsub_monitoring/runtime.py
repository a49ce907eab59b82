"""
Monitoring Runtime.

============================================================
RESPONSIBILITY
============================================================
Wires the monitoring pipeline into one controlled runtime.

- One MetricsCollector, one AlertEngine, one MonitoringFacade
- Default channels (log, console) plus Telegram when configured
- One MonitoringScheduler running the three periodic jobs
- Handles SIGINT / SIGTERM for graceful shutdown

Every component is owned by the runtime instance, so several
independent runtimes can live in one process (e.g. in tests).

============================================================
"""

import asyncio
import logging
import signal
import sys
from typing import Any, Dict, List, Optional

from .alerts import AlertEngine, AlertRule
from .config import MonitoringConfig
from .core.clock import ClockProtocol, SystemClock
from .core.exceptions import InvalidConfigError
from .dashboard_service import MonitoringFacade
from .metrics import MetricsCollector
from .notifications import (
    ConsoleChannel,
    LogChannel,
    NotificationChannel,
    TelegramChannel,
)
from .scheduler import MonitoringScheduler


logger = logging.getLogger(__name__)

JOB_AGGREGATION = "aggregation"
JOB_ALERT_CHECKS = "alert_checks"
JOB_RETENTION = "retention"


class MonitoringRuntime:
    """
    Owns and runs the monitoring pipeline.

    Use create_monitoring_runtime() to build one.
    """

    def __init__(
        self,
        config: MonitoringConfig,
        collector: MetricsCollector,
        alert_engine: AlertEngine,
        facade: MonitoringFacade,
        scheduler: MonitoringScheduler,
    ):
        self.config = config
        self.collector = collector
        self.alert_engine = alert_engine
        self.facade = facade
        self.scheduler = scheduler

        self._stop_event: Optional[asyncio.Event] = None
        self._signals_installed = False

    @property
    def is_running(self) -> bool:
        return self.scheduler.is_running

    async def start(self) -> None:
        """Start the periodic jobs."""
        await self.scheduler.start()
        logger.info("Monitoring runtime started")

    async def stop(self) -> None:
        """Stop jobs, drain deliveries, close channels."""
        await self.scheduler.stop()

        for channel in self.alert_engine.channels:
            if isinstance(channel, TelegramChannel):
                await channel.close()

        if self._stop_event is not None:
            self._stop_event.set()

        logger.info("Monitoring runtime stopped")

    async def run_forever(self) -> None:
        """Start, then block until stop() or a termination signal."""
        self._stop_event = asyncio.Event()
        self._install_signal_handlers()

        try:
            await self.start()
            await self._stop_event.wait()
        finally:
            self._restore_signal_handlers()
            await self.stop()

    def get_status(self) -> Dict[str, Any]:
        """Runtime status for CLI and health endpoints."""
        return {
            "running": self.is_running,
            "jobs": {
                name: {
                    "runs": stats.runs,
                    "failures": stats.failures,
                    "skipped": stats.skipped,
                    "last_run": stats.last_run.isoformat() if stats.last_run else None,
                }
                for name, stats in self.scheduler.get_job_stats().items()
            },
            "metrics": len(self.collector.metric_names()),
            "rules": len(self.alert_engine.rules),
            "channels": [c.name for c in self.alert_engine.channels],
        }

    # --------------------------------------------------------
    # Signal Handlers
    # --------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        """Install signal handlers for graceful shutdown."""
        if sys.platform == "win32":
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig)
        self._signals_installed = True

    def _restore_signal_handlers(self) -> None:
        """Restore original signal handlers."""
        if not self._signals_installed:
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        self._signals_installed = False

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}")
        if self._stop_event is not None:
            self._stop_event.set()


# ============================================================
# FACTORY
# ============================================================

def create_default_channels(config: MonitoringConfig) -> List[NotificationChannel]:
    """Log and console channels, plus Telegram when configured."""
    channels: List[NotificationChannel] = [LogChannel(), ConsoleChannel()]

    if config.telegram_enabled:
        channels.append(TelegramChannel(
            bot_token=config.telegram_bot_token,
            chat_ids=config.telegram_chat_ids,
            min_severity=config.telegram_min_severity,
        ))

    return channels


def create_monitoring_runtime(
    config: Optional[MonitoringConfig] = None,
    clock: Optional[ClockProtocol] = None,
    rules: Optional[List[AlertRule]] = None,
    channels: Optional[List[NotificationChannel]] = None,
) -> MonitoringRuntime:
    """
    Create a fully wired monitoring runtime.

    Args:
        config: Configuration (from environment if omitted)
        clock: Clock shared by every component
        rules: Alert rules (default rule set if None)
        channels: Notification channels (log/console/Telegram if None)

    Raises:
        InvalidConfigError: If the configuration does not validate
    """
    config = config or MonitoringConfig.from_env()
    errors = config.validate()
    if errors:
        raise InvalidConfigError(errors)

    clock = clock or SystemClock()

    collector = MetricsCollector(config=config, clock=clock)

    alert_engine = AlertEngine(
        collector=collector,
        rules=rules,
        channels=create_default_channels(config) if channels is None else channels,
        clock=clock,
        history_size=config.alert_history_size,
        recovery_margin=config.recovery_margin,
    )

    facade = MonitoringFacade(
        collector=collector,
        alert_engine=alert_engine,
        trend_lookback_hours=config.trend_lookback_hours,
        clock=clock,
    )

    scheduler = MonitoringScheduler(clock=clock, on_stop=alert_engine.drain)
    scheduler.add_job(JOB_AGGREGATION, config.aggregation_interval_seconds, collector.aggregate_metrics)
    scheduler.add_job(JOB_ALERT_CHECKS, config.alert_check_interval_seconds, alert_engine.run_checks)
    scheduler.add_job(JOB_RETENTION, config.retention_interval_seconds, collector.cleanup_metrics)

    logger.info(
        f"Monitoring runtime created: {len(alert_engine.rules)} rule(s), "
        f"{len(alert_engine.channels)} channel(s)"
    )

    return MonitoringRuntime(
        config=config,
        collector=collector,
        alert_engine=alert_engine,
        facade=facade,
        scheduler=scheduler,
    )
