"""
Core Package.

Clock and exception hierarchy shared by the monitoring pipeline.
"""

from .clock import ClockProtocol, SystemClock, MockClock, ensure_utc
from .exceptions import (
    Severity,
    MonitoringException,
    ConfigurationError,
    InvalidConfigError,
    IngestionError,
    QueryValidationError,
    InvalidTimeRangeError,
    UnsupportedExportFormatError,
    RuleEvaluationError,
    ChannelDispatchError,
)


__all__ = [
    # Clock
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ensure_utc",

    # Exceptions
    "Severity",
    "MonitoringException",
    "ConfigurationError",
    "InvalidConfigError",
    "IngestionError",
    "QueryValidationError",
    "InvalidTimeRangeError",
    "UnsupportedExportFormatError",
    "RuleEvaluationError",
    "ChannelDispatchError",
]
