"""
Alerts Package.

Threshold rules, escalation and the alert engine.
"""

from .rules import (
    AlertRule,
    EscalationLevel,
    EscalationPolicy,
    get_default_rules,
)
from .manager import (
    AlertHistory,
    AlertEngine,
    MetricValueSource,
)


__all__ = [
    # Rules
    "AlertRule",
    "EscalationLevel",
    "EscalationPolicy",
    "get_default_rules",

    # Engine
    "AlertHistory",
    "AlertEngine",
    "MetricValueSource",
]
