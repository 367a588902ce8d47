"""Tests for the Telegram and Discord clients."""

import json

import httpx
import pytest

from craftwatch.errors import DeliveryError, RateLimitedError
from craftwatch.monitor.models import Priority
from craftwatch.outbound import discord, telegram
from craftwatch.outbound.discord import DiscordClient
from craftwatch.outbound.telegram import TelegramClient


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class Recorder:
    """MockTransport handler returning a fixed response and keeping requests."""

    def __init__(self, status: int = 200, **kwargs):
        self.status = status
        self.kwargs = kwargs
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, **self.kwargs)

    @property
    def payload(self) -> dict:
        return json.loads(self.requests[-1].content)


class TestTelegramClient:
    """Tests for Bot API delivery."""

    def test_delivers_to_chat(self):
        handler = Recorder(json={"ok": True})
        client = TelegramClient("123:abc", "-100200", client=_client(handler))
        client.deliver("✅ Steve joined")

        request = handler.requests[0]
        assert str(request.url) == "https://api.telegram.org/bot123:abc/sendMessage"
        assert handler.payload["chat_id"] == "-100200"
        assert handler.payload["text"] == "✅ Steve joined"
        assert handler.payload["disable_notification"] is False

    def test_quiet_normal_priority(self):
        handler = Recorder(json={"ok": True})
        client = TelegramClient("t", "c", quiet_normal=True, client=_client(handler))
        client.deliver("chat", Priority.NORMAL)
        assert handler.payload["disable_notification"] is True
        client.deliver("💥 crash", Priority.HIGH)
        assert handler.payload["disable_notification"] is False

    def test_rate_limited(self):
        handler = Recorder(
            429,
            json={
                "ok": False,
                "error_code": 429,
                "description": "Too Many Requests: retry after 7",
                "parameters": {"retry_after": 7},
            },
        )
        client = TelegramClient("t", "c", client=_client(handler))
        with pytest.raises(RateLimitedError) as exc:
            client.deliver("x")
        assert exc.value.retry_after == 7.0
        assert exc.value.retryable is True

    def test_bad_request_is_not_retryable(self):
        handler = Recorder(400, json={"ok": False, "description": "Bad Request: chat not found"})
        client = TelegramClient("t", "c", client=_client(handler))
        with pytest.raises(DeliveryError, match="chat not found") as exc:
            client.deliver("x")
        assert exc.value.retryable is False

    def test_server_error_is_retryable(self):
        client = TelegramClient("t", "c", client=_client(Recorder(502, text="Bad Gateway")))
        with pytest.raises(DeliveryError) as exc:
            client.deliver("x")
        assert exc.value.retryable is True

    def test_network_error_is_retryable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        client = TelegramClient("t", "c", client=_client(handler))
        with pytest.raises(DeliveryError) as exc:
            client.deliver("x")
        assert exc.value.retryable is True

    def test_invalid_token_is_not_retryable(self):
        handler = Recorder(json={"ok": True})
        client = TelegramClient("123:\x00bad", "c", client=_client(handler))
        with pytest.raises(DeliveryError, match="invalid") as exc:
            client.deliver("x")
        assert exc.value.retryable is False
        assert handler.requests == []

    def test_retry_after_header_fallback(self):
        handler = Recorder(429, text="Too Many Requests", headers={"Retry-After": "12"})
        client = TelegramClient("t", "c", client=_client(handler))
        with pytest.raises(RateLimitedError) as exc:
            client.deliver("x")
        assert exc.value.retry_after == 12.0

    def test_http_date_retry_after_uses_default(self):
        handler = Recorder(
            429, text="Too Many Requests", headers={"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"}
        )
        client = TelegramClient("t", "c", client=_client(handler))
        with pytest.raises(RateLimitedError) as exc:
            client.deliver("x")
        assert exc.value.retry_after == telegram.DEFAULT_RETRY_AFTER


class TestDiscordClient:
    """Tests for webhook delivery."""

    URL = "https://discord.com/api/webhooks/1/abc"

    def test_high_priority_pings(self):
        handler = Recorder(204)
        client = DiscordClient(self.URL, client=_client(handler))
        client.deliver("💥 Server crashed", Priority.HIGH)
        assert handler.payload["content"] == "@here\n💥 Server crashed"

        client.deliver("✅ Steve joined")
        assert handler.payload["content"] == "✅ Steve joined"
        assert handler.payload["username"] == "craftwatch"

    def test_ping_disabled(self):
        handler = Recorder(204)
        client = DiscordClient(self.URL, ping_high=False, client=_client(handler))
        client.deliver("💥", Priority.HIGH)
        assert handler.payload["content"] == "💥"

    def test_rate_limited(self):
        handler = Recorder(429, json={"message": "You are being rate limited.", "retry_after": 1.5})
        client = DiscordClient(self.URL, client=_client(handler))
        with pytest.raises(RateLimitedError) as exc:
            client.deliver("x")
        assert exc.value.retry_after == 1.5

    def test_not_found_is_not_retryable(self):
        client = DiscordClient(self.URL, client=_client(Recorder(404, json={"code": 10015})))
        with pytest.raises(DeliveryError) as exc:
            client.deliver("x")
        assert exc.value.retryable is False

    def test_invalid_webhook_url_is_not_retryable(self):
        handler = Recorder(204)
        client = DiscordClient("https://discord.com/api/webhooks/\x00bad", client=_client(handler))
        with pytest.raises(DeliveryError, match="invalid") as exc:
            client.deliver("x")
        assert exc.value.retryable is False
        assert handler.requests == []

    def test_non_numeric_retry_after_uses_default(self):
        handler = Recorder(
            429,
            json={"message": "You are being rate limited.", "retry_after": "soon"},
            headers={"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"},
        )
        client = DiscordClient(self.URL, client=_client(handler))
        with pytest.raises(RateLimitedError) as exc:
            client.deliver("x")
        assert exc.value.retry_after == discord.DEFAULT_RETRY_AFTER
