"""
Notifications Package.

Alert delivery channels for the monitoring pipeline.
"""

from .channels import (
    NotificationChannel,
    LogChannel,
    ConsoleChannel,
)
from .telegram import (
    TelegramFormatter,
    TelegramRateLimiter,
    TelegramChannel,
)


__all__ = [
    "NotificationChannel",
    "LogChannel",
    "ConsoleChannel",
    "TelegramFormatter",
    "TelegramRateLimiter",
    "TelegramChannel",
]
