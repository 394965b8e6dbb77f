"""Webhook notifications (Slack-compatible payloads)."""

from typing import Literal

import httpx

from previewctl.logger import get_logger
from previewctl.models.config import NotificationsConfig

logger = get_logger(__name__)

Level = Literal["info", "success", "warning", "error"]

EMOJI: dict[str, str] = {
    "info": "ℹ️",
    "success": "✅",
    "warning": "⚠️",
    "error": "❌",
}


class Notifier:
    """Posts short messages to the configured webhook; a no-op without one."""

    def __init__(self, config: NotificationsConfig, transport: httpx.BaseTransport | None = None) -> None:
        self.config = config
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.config.webhook_url)

    def payload(self, message: str, level: Level = "info") -> dict[str, str]:
        return {
            "text": f"{EMOJI.get(level, EMOJI['info'])} {message}",
            "username": self.config.username,
            "icon_emoji": self.config.icon_emoji,
        }

    def send(self, message: str, level: Level = "info") -> bool:
        """
        Deliver one notification.

        Returns:
            True if the webhook accepted it. Delivery failures are logged only.
        """
        if not self.enabled:
            logger.debug("No webhook configured, notification skipped", level=level)
            return False
        try:
            with httpx.Client(timeout=self.config.timeout, transport=self.transport) as client:
                response = client.post(self.config.webhook_url, json=self.payload(message, level))
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Failed to send notification", level=level, error=str(e))
            return False
        logger.info("Notification sent", level=level)
        return True
