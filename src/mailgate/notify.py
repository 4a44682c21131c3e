"""Chat notifiers used for expiry notices.

A notifier posts a short text into the conversation thread where an action
was confirmed. Two implementations:

- LoggingNotifier: writes the notice to the structured log only
- WebhookNotifier: POSTs ``{channel, thread_ts, text}`` to a chat webhook

Usage:
    from mailgate.notify import build_notifier

    notifier = build_notifier(config)
    await notifier.notify("C123", "1712345678.000100", "auto-canceled ...")
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Protocol

import requests

from mailgate.core.errors import NotificationError
from mailgate.core.logging import get_logger

if TYPE_CHECKING:
    from mailgate.config_schema import AppConfig

logger = get_logger(__name__)

DEFAULT_RETRY_DELAYS = [1, 2]


class Notifier(Protocol):
    """Anything that can post a text into a chat thread."""

    async def notify(self, channel: str, thread_ts: str, text: str) -> None: ...


class LoggingNotifier:
    """Notifier that only logs (no chat integration configured)."""

    async def notify(self, channel: str, thread_ts: str, text: str) -> None:
        logger.info("chat_notice", channel=channel, thread_ts=thread_ts, text=text)


class WebhookNotifier:
    """Notifier posting JSON to a chat webhook.

    Timeouts and connection errors are retried; HTTP error responses are not.
    The blocking request runs in a worker thread.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        max_retries: int = 2,
        retry_delays: list[float] | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delays = retry_delays if retry_delays is not None else DEFAULT_RETRY_DELAYS
        self.session = requests.Session()

    async def notify(self, channel: str, thread_ts: str, text: str) -> None:
        await asyncio.to_thread(self._post, channel, thread_ts, text)

    def _delay(self, attempt: int) -> float:
        if not self.retry_delays:
            return 0
        return self.retry_delays[min(attempt, len(self.retry_delays) - 1)]

    def _post(self, channel: str, thread_ts: str, text: str) -> None:
        """Send the notice, retrying transport failures.

        Raises:
            NotificationError: If the webhook rejects the notice or stays unreachable
        """
        payload = {"channel": channel, "thread_ts": thread_ts, "text": text}

        for attempt in range(self.max_retries + 1):
            try:
                response = self.session.post(self.url, json=payload, timeout=self.timeout)
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                if attempt < self.max_retries:
                    delay = self._delay(attempt)
                    logger.warning(
                        "Webhook delivery failed, retrying",
                        channel=channel,
                        attempt=attempt + 1,
                        delay=delay,
                        error=str(e),
                    )
                    time.sleep(delay)
                    continue
                raise NotificationError(
                    f"Webhook unreachable after {self.max_retries + 1} attempts: {e}. "
                    "Check notifications.webhook_url and network access."
                ) from e

            if response.status_code >= 400:
                raise NotificationError(
                    f"Webhook rejected notice for channel {channel} "
                    f"(HTTP {response.status_code}): {response.text[:200]}",
                    status_code=response.status_code,
                )

            logger.debug("chat_notice_sent", channel=channel, status_code=response.status_code)
            return


def build_notifier(config: AppConfig) -> Notifier:
    """Webhook notifier when a URL is configured, logging notifier otherwise."""
    url = config.notifications.webhook_url
    if url:
        return WebhookNotifier(url, timeout=config.notifications.timeout_seconds)
    return LoggingNotifier()
