"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the exception hierarchy for the monitoring pipeline.

- Ingestion faults are logged and swallowed at the boundary
- Evaluation and dispatch faults are isolated per rule / channel
- Query faults are surfaced to the caller as typed validation errors

============================================================
EXCEPTION HIERARCHY
============================================================
MonitoringException (base)
├── ConfigurationError
│   └── InvalidConfigError
├── IngestionError
├── QueryValidationError
│   ├── InvalidTimeRangeError
│   └── UnsupportedExportFormatError
├── RuleEvaluationError
└── ChannelDispatchError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, may impact monitoring coverage."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class MonitoringException(Exception):
    """
    Base exception for all monitoring pipeline errors.

    All exceptions carry:
    - severity: for log level decisions
    - context: for debugging
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def to_log_format(self) -> str:
        """Format exception for a single log line."""
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        line = f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
        if ctx_str:
            line += f" | {ctx_str}"
        return line


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(MonitoringException):
    """Error in configuration."""

    default_severity = Severity.HIGH


class InvalidConfigError(ConfigurationError):
    """Configuration failed validation."""

    def __init__(self, errors: list):
        super().__init__(
            message=f"Invalid monitoring configuration: {'; '.join(errors)}",
            context={"errors": list(errors)},
        )
        self.errors = list(errors)


# ============================================================
# INGESTION ERRORS
# ============================================================

class IngestionError(MonitoringException):
    """A producer handed the collector something it cannot record."""

    default_severity = Severity.LOW

    def __init__(self, message: str, metric_name: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if metric_name is not None:
            context["metric_name"] = metric_name
        super().__init__(message, context=context, **kwargs)


# ============================================================
# QUERY ERRORS
# ============================================================

class QueryValidationError(MonitoringException):
    """Malformed query parameters."""

    default_severity = Severity.LOW

    def __init__(self, message: str, parameter: Optional[str] = None, value: Any = None, **kwargs):
        context = kwargs.pop("context", {})
        if parameter:
            context["parameter"] = parameter
        if value is not None:
            context["value"] = str(value)[:100]
        super().__init__(message, context=context, **kwargs)
        self.parameter = parameter


class InvalidTimeRangeError(QueryValidationError):
    """Range start is after range end."""

    def __init__(self, start: datetime, end: datetime):
        super().__init__(
            message=f"Invalid time range: {start.isoformat()} is after {end.isoformat()}",
            parameter="range",
            context={"start": start.isoformat(), "end": end.isoformat()},
        )


class UnsupportedExportFormatError(QueryValidationError):
    """Export format is not one of the supported formats."""

    def __init__(self, requested: Any, supported: list):
        super().__init__(
            message=f"Unsupported export format: {requested!r} (supported: {', '.join(supported)})",
            parameter="format",
            value=requested,
        )


# ============================================================
# ALERTING ERRORS
# ============================================================

class RuleEvaluationError(MonitoringException):
    """Evaluating a single alert rule failed."""

    def __init__(self, rule_name: str, cause: Exception):
        super().__init__(
            message=f"Failed to evaluate rule {rule_name}",
            context={"rule_name": rule_name},
            cause=cause,
        )
        self.rule_name = rule_name


class ChannelDispatchError(MonitoringException):
    """A notification channel failed to deliver an alert."""

    def __init__(self, channel: str, message: str, **kwargs):
        context = kwargs.pop("context", {})
        context["channel"] = channel
        super().__init__(f"{channel}: {message}", context=context, **kwargs)
        self.channel = channel
