from __future__ import annotations

from typing import Optional

import httpx

from bracketbot.config import Settings
from bracketbot.core.logger import get_logger
from bracketbot.core.retry import with_retry
from bracketbot.notify.base import LogNotifier, Notifier

log = get_logger("line")

LINE_API_BASE = "https://api.line.me"
LINE_MAX_TEXT = 5000


class LineNotifyError(Exception):
    """Raised when the LINE Messaging API refuses a push."""
    pass


class LineNotifier(Notifier):
    """Push text messages to one LINE user via the Messaging API.

    Configuration:
        LINE_CHANNEL_TOKEN: Channel access token (sent as Bearer)
        LINE_CHANNEL_SECRET: Channel secret (kept for webhook verification)
        LINE_USER_ID: Recipient user id

    Usage:
        notifier = LineNotifier(channel_token="...", user_id="U123")
        notifier.send_alert("Bot started")
        notifier.close()
    """

    def __init__(
        self,
        channel_token: str,
        user_id: str,
        base_url: str = LINE_API_BASE,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not channel_token or not user_id:
            raise ValueError("LINE channel token and user id are required")

        self.user_id = user_id
        self.client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {channel_token}",
                "Content-Type": "application/json",
            },
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "LineNotifier":
        return cls(
            channel_token=settings.line_channel_token,
            user_id=settings.line_user_id,
            base_url=settings.line_base_url,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()
        log.debug("LINE client closed")

    @with_retry(max_attempts=3, min_wait=1.0, max_wait=10.0)
    def _push(self, text: str) -> None:
        payload = {
            "to": self.user_id,
            "messages": [{"type": "text", "text": text[:LINE_MAX_TEXT]}],
        }
        response = self.client.post("/v2/bot/message/push", json=payload)
        if response.status_code != 200:
            raise LineNotifyError(f"LINE push failed: {response.status_code} {response.text[:200]}")

    def push_text(self, text: str) -> bool:
        try:
            self._push(text)
            return True
        except (LineNotifyError, httpx.HTTPError) as e:
            log.warning(f"Notification not delivered: {e}")
            return False


def make_notifier(settings: Settings) -> Notifier:
    """Create the notifier based on configuration."""
    if settings.line_configured:
        log.info("Using LineNotifier (LINE Messaging API).")
        return LineNotifier.from_settings(settings)

    log.info("Using LogNotifier (LINE not configured).")
    return LogNotifier()
