"""Tests for chat notifiers."""

from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import requests

from mailgate.config_schema import AppConfig
from mailgate.core.errors import NotificationError
from mailgate.notify import LoggingNotifier, WebhookNotifier, build_notifier

WEBHOOK_URL = "https://chat.example.com/hooks/abc"


def _response(status_code: int = 200, text: str = "ok") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    return response


@pytest.fixture
def notifier() -> WebhookNotifier:
    return WebhookNotifier(WEBHOOK_URL, timeout=2.0, max_retries=2, retry_delays=[0])


class TestWebhookNotifier:
    async def test_posts_payload(self, notifier: WebhookNotifier) -> None:
        with patch.object(notifier.session, "post", return_value=_response()) as post:
            await notifier.notify("C1", "171.01", "expired")

        post.assert_called_once_with(
            WEBHOOK_URL,
            json={"channel": "C1", "thread_ts": "171.01", "text": "expired"},
            timeout=2.0,
        )

    async def test_retries_connection_errors(self, notifier: WebhookNotifier) -> None:
        side_effect = [requests.exceptions.ConnectionError("reset"), _response()]
        with patch.object(notifier.session, "post", side_effect=side_effect) as post:
            await notifier.notify("C1", "171.01", "expired")

        assert post.call_count == 2

    async def test_gives_up_after_retries(self, notifier: WebhookNotifier) -> None:
        with patch.object(
            notifier.session, "post", side_effect=requests.exceptions.Timeout("slow")
        ) as post:
            with pytest.raises(NotificationError, match="unreachable"):
                await notifier.notify("C1", "171.01", "expired")

        assert post.call_count == 3

    async def test_http_error_is_not_retried(self, notifier: WebhookNotifier) -> None:
        with patch.object(
            notifier.session, "post", return_value=_response(404, "no such channel")
        ) as post:
            with pytest.raises(NotificationError) as exc_info:
                await notifier.notify("C1", "171.01", "expired")

        assert exc_info.value.status_code == 404
        assert post.call_count == 1


async def test_logging_notifier_does_not_raise() -> None:
    await LoggingNotifier().notify("C1", "171.01", "expired")


class TestBuildNotifier:
    def test_logging_without_url(self, sample_config: AppConfig) -> None:
        assert isinstance(build_notifier(sample_config), LoggingNotifier)

    def test_webhook_with_url(self, sample_config_dict: dict[str, Any]) -> None:
        sample_config_dict["notifications"] = {"webhook_url": WEBHOOK_URL, "timeout_seconds": 3}
        notifier = build_notifier(AppConfig(**sample_config_dict))

        assert isinstance(notifier, WebhookNotifier)
        assert notifier.url == WEBHOOK_URL
        assert notifier.timeout == 3
