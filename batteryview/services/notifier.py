"""User-visible notifications (toasts), optionally pushed through Apprise."""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from apprise import Apprise

from batteryview.core.config import NotificationConfig
from batteryview.core.logger import get_logger

logger = get_logger(__name__)


class ToastLevel(str, Enum):
    """Niveau d'une notification."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


_EMOJI = {
    ToastLevel.INFO: "ℹ️",
    ToastLevel.SUCCESS: "✅",
    ToastLevel.WARNING: "⚠️",
    ToastLevel.ERROR: "❌",
}


@dataclass(frozen=True)
class Toast:
    """One notification as shown to the user."""

    level: ToastLevel
    title: str
    message: str
    created_at: datetime = field(default_factory=datetime.now)


class Notifier:
    """Notification service.

    Every toast is kept in a bounded history for the UI layer. When Apprise
    URLs are configured, toasts are also pushed to those channels.
    """

    def __init__(self, config: NotificationConfig | None = None) -> None:
        self.config = config or NotificationConfig()
        self.enabled = self.config.enabled
        self.history: deque[Toast] = deque(maxlen=self.config.history_size)
        self.apprise: Apprise | None = None

        if not self.enabled:
            logger.info("notifications_disabled")
            return

        urls = [url.strip() for url in self.config.urls.split(",") if url.strip()]
        if urls:
            self.apprise = Apprise()
            for url in urls:
                self.apprise.add(url)
                logger.info("notification_url_added", url=url[:20] + "...")

    async def notify(self, level: ToastLevel, title: str, message: str) -> Toast:
        """Record a toast and push it to the configured channels.

        Args:
            level: Toast level
            title: Toast title
            message: Toast message

        Returns:
            The recorded toast
        """
        toast = Toast(level=level, title=title, message=message)

        if not self.enabled:
            return toast

        self.history.append(toast)
        logger.info("toast_emitted", level=level.value, title=title)

        if self.apprise is not None:
            body = f"{_EMOJI[level]} *{title}*\n\n{message}"
            sent = await self._send_async(body, body_format="markdown")
            if not sent:
                logger.warning("notification_push_failed", title=title)

        return toast

    async def info(self, title: str, message: str) -> Toast:
        return await self.notify(ToastLevel.INFO, title, message)

    async def success(self, title: str, message: str) -> Toast:
        return await self.notify(ToastLevel.SUCCESS, title, message)

    async def warning(self, title: str, message: str) -> Toast:
        return await self.notify(ToastLevel.WARNING, title, message)

    async def error(self, title: str, message: str) -> Toast:
        return await self.notify(ToastLevel.ERROR, title, message)

    async def _send_async(self, body: str, body_format: str = "text") -> bool:
        """Send notification asynchronously.

        Args:
            body: Message body
            body_format: Message format (text, markdown, html)

        Returns:
            True if sent successfully, False otherwise
        """
        # Apprise doesn't have native async support, so we run it in executor
        loop = asyncio.get_running_loop()

        def _send_sync() -> bool:
            if self.apprise is None:
                return False
            try:
                return bool(self.apprise.notify(body=body, body_format=body_format))
            except Exception as e:
                logger.error("apprise_notify_error", error=str(e))
                return False

        return await loop.run_in_executor(None, _send_sync)
