"""Discord webhook client for sending notifications."""

import httpx
import structlog

from craftwatch.errors import DeliveryError, RateLimitedError
from craftwatch.monitor.models import Priority

log = structlog.get_logger()

# Seconds to wait on a 429 that carries no usable retry hint
DEFAULT_RETRY_AFTER = 1.0


class DiscordClient:
    """Simple Discord webhook client."""

    max_message_length = 2000

    def __init__(
        self,
        webhook_url: str,
        ping_high: bool = True,
        username: str = "craftwatch",
        client: httpx.Client | None = None,
    ):
        """Initialize the client.

        Args:
            webhook_url: Discord webhook URL
            ping_high: Prepend @here to HIGH priority messages
            username: Display name for the webhook
            client: Optional preconfigured httpx client
        """
        self.webhook_url = webhook_url
        self.ping_high = ping_high
        self.username = username
        self._client = client or httpx.Client(timeout=10.0)

    def deliver(self, text: str, priority: Priority = Priority.NORMAL) -> None:
        """Send a message to Discord.

        Raises:
            RateLimitedError: Discord answered 429; honour ``retry_after``
            DeliveryError: Network failure or rejected request
        """
        ping = self.ping_high and priority == Priority.HIGH
        content = f"@here\n{text}" if ping else text

        try:
            response = self._client.post(
                self.webhook_url,
                json={"content": content, "username": self.username},
            )
        except httpx.InvalidURL as e:
            raise DeliveryError(f"Discord webhook URL is invalid: {e}", retryable=False) from e
        except httpx.RequestError as e:
            raise DeliveryError(f"Discord request failed: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError(self._retry_after(response))
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise DeliveryError(f"Discord API error {status}", retryable=status >= 500) from e
        log.debug("Discord message sent", ping=ping)

    @staticmethod
    def _retry_after(response: httpx.Response) -> float:
        try:
            return float(response.json()["retry_after"])
        except (ValueError, KeyError, TypeError):
            pass
        try:
            return float(response.headers.get("Retry-After", DEFAULT_RETRY_AFTER))
        except ValueError:
            return DEFAULT_RETRY_AFTER

    def close(self) -> None:
        self._client.close()
