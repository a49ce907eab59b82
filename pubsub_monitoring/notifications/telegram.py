"""
Telegram Notification Channel.

============================================================
PURPOSE
============================================================
Push alert notifications to one or more Telegram chats via the
Bot API `sendMessage` call.

- Outbound only: the bot never reads updates or accepts commands
- Sliding-window send budget (per minute and per hour)
- Alerts under the severity floor are filtered out in should_send;
  resolution notices always pass
- Any chat that cannot be reached makes send() raise
  ChannelDispatchError, after the remaining chats were tried

============================================================
"""

import asyncio
import html
import logging
import os
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, List, Optional

import aiohttp

from ..core.clock import ClockProtocol, SystemClock
from ..core.exceptions import ChannelDispatchError
from ..models import Alert, AlertSeverity, AlertState
from .channels import NotificationChannel, SEVERITY_ICONS


logger = logging.getLogger(__name__)

API_ROOT = "https://api.telegram.org"
RESOLVED_ICON = "✅"
DEFAULT_ICON = "📌"


# ============================================================
# FORMATTING
# ============================================================

class TelegramFormatter:
    """Renders alerts and summaries as Telegram HTML."""

    @classmethod
    def format_alert(cls, alert: Alert) -> str:
        icon = RESOLVED_ICON if alert.resolved else SEVERITY_ICONS.get(alert.severity, DEFAULT_ICON)
        stamp = alert.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC")

        parts = [
            f"{icon} <b>{html.escape(alert.rule_name)}</b>",
            "",
            html.escape(alert.message),
            "",
            f"<code>[{alert.severity.value}]</code> from <i>{html.escape(alert.source)}</i> at {stamp}",
        ]
        parts.extend(cls._metric_block(alert))
        return "\n".join(parts)

    @classmethod
    def format_summary(cls, states: List[AlertState]) -> str:
        if not states:
            return f"{RESOLVED_ICON} No active alerts"

        by_severity = {severity: [] for severity in AlertSeverity}
        for state in states:
            by_severity[state.severity].append(state)

        critical = by_severity[AlertSeverity.CRITICAL]
        parts = [
            f"<b>Active alerts: {len(states)}</b>",
            f"{SEVERITY_ICONS[AlertSeverity.CRITICAL]} Critical: {len(critical)}",
            f"{SEVERITY_ICONS[AlertSeverity.WARNING]} Warning: {len(by_severity[AlertSeverity.WARNING])}",
            f"{SEVERITY_ICONS[AlertSeverity.INFO]} Info: {len(by_severity[AlertSeverity.INFO])}",
        ]
        if critical:
            parts.append("")
            parts.extend(f"• {html.escape(s.rule_name)} (x{s.count})" for s in critical)
        return "\n".join(parts)

    @staticmethod
    def _metric_block(alert: Alert) -> List[str]:
        if alert.metric_name is None:
            return []

        block = ["", f"metric <code>{html.escape(alert.metric_name)}</code>"]
        if alert.current_value is not None:
            block.append(f"value {alert.current_value:.4f}")
        if alert.threshold_value is not None:
            block.append(f"threshold {alert.threshold_value:.4f}")
        return block


# ============================================================
# SEND BUDGET
# ============================================================

class TelegramRateLimiter:
    """
    Send budget over a 1-minute and a 1-hour sliding window.

    Each granted send is stamped once; stamps older than a window no
    longer count against it.
    """

    def __init__(
        self,
        max_per_minute: int = 20,
        max_per_hour: int = 100,
        clock: Optional[ClockProtocol] = None,
    ):
        self._limits = ((timedelta(minutes=1), max_per_minute), (timedelta(hours=1), max_per_hour))
        self._clock = clock or SystemClock()
        self._granted: Deque[datetime] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> bool:
        """Take one send from the budget. False if either window is full."""
        async with self._lock:
            now = self._clock.now()
            self._expire(now)
            if any(self._used(now, window) >= limit for window, limit in self._limits):
                return False
            self._granted.append(now)
            return True

    @property
    def remaining_minute(self) -> int:
        window, limit = self._limits[0]
        return max(0, limit - self._used(self._clock.now(), window))

    @property
    def remaining_hour(self) -> int:
        window, limit = self._limits[1]
        return max(0, limit - self._used(self._clock.now(), window))

    def _used(self, now: datetime, window: timedelta) -> int:
        return sum(1 for stamp in self._granted if stamp > now - window)

    def _expire(self, now: datetime) -> None:
        longest = max(window for window, _ in self._limits)
        while self._granted and self._granted[0] <= now - longest:
            self._granted.popleft()


# ============================================================
# CHANNEL
# ============================================================

class TelegramChannel(NotificationChannel):
    """
    Alert channel backed by a Telegram bot.

    Unconfigured (no token or no chat) means disabled; should_send
    then rejects everything.
    """

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_ids: Optional[List[str]] = None,
        rate_limiter: Optional[TelegramRateLimiter] = None,
        min_severity: AlertSeverity = AlertSeverity.WARNING,
        timeout_seconds: float = 10.0,
    ):
        """
        Args:
            bot_token: Bot token, else TELEGRAM_BOT_TOKEN
            chat_ids: Target chats, else TELEGRAM_CHAT_ID (comma separated)
            rate_limiter: Send budget (20/min, 100/h if omitted)
            min_severity: Lowest severity forwarded
            timeout_seconds: Total timeout per API request
        """
        self._token = bot_token or os.getenv("TELEGRAM_BOT_TOKEN", "")
        self._chat_ids = list(chat_ids) if chat_ids else _chat_ids_from_env()
        self._budget = rate_limiter or TelegramRateLimiter()
        self._min_severity = min_severity
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._http: Optional[aiohttp.ClientSession] = None
        self._enabled = bool(self._token and self._chat_ids)

        if self._enabled:
            logger.info(f"Telegram channel ready for {len(self._chat_ids)} chat(s)")
        else:
            logger.warning("Telegram channel disabled: TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID missing")

    @property
    def name(self) -> str:
        return "telegram"

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def should_send(self, alert: Alert) -> bool:
        if not self._enabled:
            return False
        return alert.resolved or alert.severity.rank >= self._min_severity.rank

    async def send(self, alert: Alert) -> None:
        await self._broadcast(TelegramFormatter.format_alert(alert))

    async def send_summary(self, states: List[AlertState]) -> None:
        await self._broadcast(TelegramFormatter.format_summary(states))

    async def close(self) -> None:
        if self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

    # --------------------------------------------------------
    # HTTP
    # --------------------------------------------------------

    async def _broadcast(self, text: str) -> None:
        if not await self._budget.acquire():
            raise ChannelDispatchError(self.name, "send budget exhausted, message dropped")

        failed = []
        for chat_id in self._chat_ids:
            try:
                await self._send_message(chat_id, text)
            except ChannelDispatchError as e:
                logger.error(f"Telegram chat {chat_id} unreachable: {e.message}")
                failed.append(chat_id)

        if failed:
            raise ChannelDispatchError(
                self.name,
                f"{len(failed)}/{len(self._chat_ids)} chat(s) not reached",
                context={"failed_chats": failed},
            )

    async def _send_message(self, chat_id: str, text: str, parse_mode: str = "HTML") -> None:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(timeout=self._timeout)

        body = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": parse_mode,
            "disable_web_page_preview": True,
        }
        try:
            async with self._http.post(f"{API_ROOT}/bot{self._token}/sendMessage", json=body) as response:
                if response.status != 200:
                    detail = (await response.text())[:200]
                    raise ChannelDispatchError(self.name, f"HTTP {response.status}: {detail}")
        except aiohttp.ClientError as e:
            raise ChannelDispatchError(self.name, f"HTTP error: {e}", cause=e) from e
        except asyncio.TimeoutError as e:
            raise ChannelDispatchError(self.name, "request timed out", cause=e) from e


def _chat_ids_from_env() -> List[str]:
    raw = os.getenv("TELEGRAM_CHAT_ID", "")
    return [chat_id.strip() for chat_id in raw.split(",") if chat_id.strip()]
