"""Telegram Bot API client for sending notifications."""

import httpx
import structlog

from craftwatch.errors import DeliveryError, RateLimitedError
from craftwatch.monitor.models import Priority

log = structlog.get_logger()

TELEGRAM_API = "https://api.telegram.org"

# Seconds to wait on a 429 that carries no usable retry hint
DEFAULT_RETRY_AFTER = 5.0


class TelegramClient:
    """Sends plain-text messages to one chat."""

    max_message_length = 4096

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        quiet_normal: bool = False,
        client: httpx.Client | None = None,
        base_url: str = TELEGRAM_API,
    ):
        """Initialize the client.

        Args:
            bot_token: Token from @BotFather
            chat_id: Target chat (user, group or channel id)
            quiet_normal: Deliver NORMAL priority messages without a sound
            client: Optional preconfigured httpx client (tests inject a mock transport)
            base_url: Bot API root
        """
        self.chat_id = chat_id
        self.quiet_normal = quiet_normal
        self._url = f"{base_url.rstrip('/')}/bot{bot_token}/sendMessage"
        self._client = client or httpx.Client(timeout=10.0)

    def deliver(self, text: str, priority: Priority = Priority.NORMAL) -> None:
        """Send a message.

        Raises:
            RateLimitedError: Telegram answered 429; honour ``retry_after``
            DeliveryError: Network failure or rejected request
        """
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "disable_web_page_preview": True,
            "disable_notification": self.quiet_normal and priority == Priority.NORMAL,
        }
        try:
            response = self._client.post(self._url, json=payload)
        except httpx.InvalidURL as e:
            raise DeliveryError(f"Telegram URL is invalid: {e}", retryable=False) from e
        except httpx.RequestError as e:
            raise DeliveryError(f"Telegram request failed: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError(self._retry_after(response))
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise DeliveryError(
                f"Telegram API error {status}: {self._description(response)}",
                retryable=status >= 500,
            ) from e
        log.debug("Telegram message sent", chars=len(text))

    @staticmethod
    def _retry_after(response: httpx.Response) -> float:
        try:
            return float(response.json()["parameters"]["retry_after"])
        except (ValueError, KeyError, TypeError):
            pass
        try:
            return float(response.headers.get("Retry-After", DEFAULT_RETRY_AFTER))
        except ValueError:
            return DEFAULT_RETRY_AFTER

    @staticmethod
    def _description(response: httpx.Response) -> str:
        try:
            return str(response.json().get("description", ""))
        except ValueError:
            return response.text[:200]

    def close(self) -> None:
        self._client.close()
