"""
Monitoring Configuration.

============================================================
PURPOSE
============================================================
Single configuration object for the collector, the alert engine,
the scheduler and the optional Telegram channel.

Values come from environment variables (a local `.env` file is
loaded first). Anything unset falls back to the defaults below.

============================================================
ENVIRONMENT
============================================================
MONITORING_AGGREGATION_INTERVAL_SECONDS   default 60
MONITORING_ALERT_CHECK_INTERVAL_SECONDS   default 30
MONITORING_RETENTION_INTERVAL_SECONDS     default 3600
MONITORING_RETENTION_DAYS                 default 7
MONITORING_MAX_POINTS                     default 10000
MONITORING_LATENCY_ALERT_THRESHOLD_MS     default 5000
MONITORING_LATENCY_STATS_CACHE_SECONDS    default 10
MONITORING_SERIES_STATS_CACHE_MINUTES     default 5
MONITORING_ALERT_HISTORY_SIZE             default 1000
MONITORING_RECOVERY_MARGIN                default 0.1
MONITORING_TREND_LOOKBACK_HOURS           default 1
MONITORING_REGISTER_DEFAULT_METRICS       default true
MONITORING_LOG_LEVEL                      default INFO
MONITORING_LOG_FORMAT                     default text
TELEGRAM_BOT_TOKEN                        unset disables Telegram
TELEGRAM_CHAT_ID                          comma separated
TELEGRAM_MIN_SEVERITY                     default WARNING

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from .core.exceptions import InvalidConfigError
from .models import (
    AlertSeverity,
    ALERT_HISTORY_MAX_SIZE,
    DEFAULT_LATENCY_ALERT_THRESHOLD_MS,
    DEFAULT_RECOVERY_MARGIN,
    DEFAULT_RETENTION_DAYS,
    LATENCY_STATS_CACHE_SECONDS,
    MAX_POINTS,
    SERIES_STATS_CACHE_MINUTES,
)


VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
VALID_LOG_FORMATS = ("json", "text")


@dataclass
class MonitoringConfig:
    """Monitoring pipeline configuration."""

    # Scheduling
    aggregation_interval_seconds: float = 60
    alert_check_interval_seconds: float = 30
    retention_interval_seconds: float = 3600

    # Storage
    retention_days: int = DEFAULT_RETENTION_DAYS
    max_points: int = MAX_POINTS

    # Latency
    latency_alert_threshold_ms: float = DEFAULT_LATENCY_ALERT_THRESHOLD_MS
    latency_stats_cache_seconds: float = LATENCY_STATS_CACHE_SECONDS
    series_stats_cache_minutes: float = SERIES_STATS_CACHE_MINUTES

    # Alerting
    alert_history_size: int = ALERT_HISTORY_MAX_SIZE
    recovery_margin: float = DEFAULT_RECOVERY_MARGIN
    trend_lookback_hours: int = 1
    register_default_metrics: bool = True

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"

    # Telegram
    telegram_bot_token: Optional[str] = None
    telegram_chat_ids: List[str] = field(default_factory=list)
    telegram_min_severity: AlertSeverity = AlertSeverity.WARNING

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_ids)

    @classmethod
    def from_env(cls) -> "MonitoringConfig":
        """
        Load configuration from environment variables.

        Raises:
            InvalidConfigError: If a variable holds a value that cannot be parsed
        """
        load_dotenv()

        errors: List[str] = []

        def number(name: str, cast, default):
            raw = os.getenv(name, "").strip()
            if not raw:
                return default
            try:
                return cast(raw)
            except ValueError:
                kind = "an integer" if cast is int else "a number"
                errors.append(f"{name} must be {kind}, got {raw!r}")
                return default

        severity = os.getenv("TELEGRAM_MIN_SEVERITY", "WARNING").strip().upper()
        try:
            min_severity = AlertSeverity(severity)
        except ValueError:
            errors.append(
                f"TELEGRAM_MIN_SEVERITY must be one of "
                f"{', '.join(s.value for s in AlertSeverity)}, got {severity!r}"
            )
            min_severity = AlertSeverity.WARNING

        chat_ids = os.getenv("TELEGRAM_CHAT_ID", "")

        config = cls(
            aggregation_interval_seconds=number("MONITORING_AGGREGATION_INTERVAL_SECONDS", float, 60),
            alert_check_interval_seconds=number("MONITORING_ALERT_CHECK_INTERVAL_SECONDS", float, 30),
            retention_interval_seconds=number("MONITORING_RETENTION_INTERVAL_SECONDS", float, 3600),
            retention_days=number("MONITORING_RETENTION_DAYS", int, DEFAULT_RETENTION_DAYS),
            max_points=number("MONITORING_MAX_POINTS", int, MAX_POINTS),
            latency_alert_threshold_ms=number(
                "MONITORING_LATENCY_ALERT_THRESHOLD_MS", float, DEFAULT_LATENCY_ALERT_THRESHOLD_MS
            ),
            latency_stats_cache_seconds=number(
                "MONITORING_LATENCY_STATS_CACHE_SECONDS", float, LATENCY_STATS_CACHE_SECONDS
            ),
            series_stats_cache_minutes=number(
                "MONITORING_SERIES_STATS_CACHE_MINUTES", float, SERIES_STATS_CACHE_MINUTES
            ),
            alert_history_size=number("MONITORING_ALERT_HISTORY_SIZE", int, ALERT_HISTORY_MAX_SIZE),
            recovery_margin=number("MONITORING_RECOVERY_MARGIN", float, DEFAULT_RECOVERY_MARGIN),
            trend_lookback_hours=number("MONITORING_TREND_LOOKBACK_HOURS", int, 1),
            register_default_metrics=os.getenv("MONITORING_REGISTER_DEFAULT_METRICS", "true").lower() == "true",
            log_level=os.getenv("MONITORING_LOG_LEVEL", "INFO"),
            log_format=os.getenv("MONITORING_LOG_FORMAT", "text"),
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN") or None,
            telegram_chat_ids=[c.strip() for c in chat_ids.split(",") if c.strip()],
            telegram_min_severity=min_severity,
        )

        if errors:
            raise InvalidConfigError(errors)

        return config

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        for name in (
            "aggregation_interval_seconds",
            "alert_check_interval_seconds",
            "retention_interval_seconds",
        ):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive")

        if self.retention_days < 1:
            errors.append("retention_days must be at least 1")

        if self.max_points < 1:
            errors.append("max_points must be at least 1")

        if self.latency_alert_threshold_ms <= 0:
            errors.append("latency_alert_threshold_ms must be positive")

        if self.latency_stats_cache_seconds < 0 or self.series_stats_cache_minutes < 0:
            errors.append("cache validity windows must not be negative")

        if self.alert_history_size < 1:
            errors.append("alert_history_size must be at least 1")

        if not 0 <= self.recovery_margin < 1:
            errors.append("recovery_margin must be in [0, 1)")

        if self.trend_lookback_hours < 1:
            errors.append("trend_lookback_hours must be at least 1")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"log_level must be one of {', '.join(VALID_LOG_LEVELS)}")

        if self.log_format not in VALID_LOG_FORMATS:
            errors.append(f"log_format must be one of {', '.join(VALID_LOG_FORMATS)}")

        if self.telegram_bot_token and not self.telegram_chat_ids:
            errors.append("TELEGRAM_CHAT_ID required when TELEGRAM_BOT_TOKEN is set")

        return errors
