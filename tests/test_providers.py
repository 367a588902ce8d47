"""Tests for the HTTP answer providers."""

import json

import httpx
import pytest

from craftwatch.errors import ProviderError, QuotaExceededError
from craftwatch.llm.chain import ALL_PROVIDERS_EXHAUSTED, ProviderChain
from craftwatch.llm.providers import GeminiProvider, OpenAICompatibleProvider


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class TestOpenAICompatibleProvider:
    """Tests for chat completion requests and error mapping."""

    def test_success(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_completion("  Creepers explode.  "))

        provider = OpenAICompatibleProvider(
            "deepseek",
            api_key="sk-test",
            model="deepseek-chat",
            base_url="https://api.deepseek.com/v1/",
            client=_client(handler),
        )
        assert provider.ask("What do creepers do?", max_tokens=50) == "Creepers explode."
        assert seen["url"] == "https://api.deepseek.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "deepseek-chat"
        assert seen["body"]["max_tokens"] == 50
        assert seen["body"]["messages"] == [{"role": "user", "content": "What do creepers do?"}]

    def test_system_prompt_first(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_completion("ok"))

        provider = OpenAICompatibleProvider(
            "openai", "k", "gpt-3.5-turbo", system_prompt="Be brief.", client=_client(handler)
        )
        provider.ask("q")
        assert seen["body"]["messages"][0] == {"role": "system", "content": "Be brief."}

    def test_payment_required_is_quota(self):
        provider = OpenAICompatibleProvider(
            "openai", "k", "m", client=_client(lambda r: httpx.Response(402, text="pay up"))
        )
        with pytest.raises(QuotaExceededError):
            provider.ask("q")

    def test_quota_429_carries_retry_after(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                429,
                headers={"Retry-After": "120"},
                json={"error": {"message": "You exceeded your current quota"}},
            )

        provider = OpenAICompatibleProvider("openai", "k", "m", client=_client(handler))
        with pytest.raises(QuotaExceededError) as exc:
            provider.ask("q")
        assert exc.value.retry_after == 120.0

    def test_plain_429_is_provider_error(self):
        provider = OpenAICompatibleProvider(
            "openai",
            "k",
            "m",
            client=_client(lambda r: httpx.Response(429, text="slow down")),
        )
        with pytest.raises(ProviderError):
            provider.ask("q")

    def test_server_error(self):
        provider = OpenAICompatibleProvider(
            "openai", "k", "m", client=_client(lambda r: httpx.Response(500, text="boom"))
        )
        with pytest.raises(ProviderError, match="HTTP 500"):
            provider.ask("q")

    @pytest.mark.parametrize(
        "body",
        [{}, {"choices": []}, {"choices": [{"message": {"content": None}}]}],
    )
    def test_malformed_response(self, body):
        provider = OpenAICompatibleProvider(
            "openai", "k", "m", client=_client(lambda r: httpx.Response(200, json=body))
        )
        with pytest.raises(ProviderError, match="unexpected response format"):
            provider.ask("q")

    def test_invalid_json(self):
        provider = OpenAICompatibleProvider(
            "openai", "k", "m", client=_client(lambda r: httpx.Response(200, text="<html>"))
        )
        with pytest.raises(ProviderError, match="invalid JSON"):
            provider.ask("q")

    def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        provider = OpenAICompatibleProvider("openai", "k", "m", client=_client(handler))
        with pytest.raises(ProviderError, match="timeout"):
            provider.ask("q", timeout=0.1)

    def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        provider = OpenAICompatibleProvider("openai", "k", "m", client=_client(handler))
        with pytest.raises(ProviderError, match="network error"):
            provider.ask("q")


class TestGeminiProvider:
    """Tests for generateContent requests."""

    def test_success_joins_parts(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers["X-goog-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "candidates": [
                        {"content": {"parts": [{"text": "Line one."}, {"text": "Line two."}]}}
                    ]
                },
            )

        provider = GeminiProvider("gemini-1", api_key="g-key", client=_client(handler))
        assert provider.ask("hi", max_tokens=64) == "Line one.\nLine two."
        assert seen["url"].endswith("/models/gemini-2.0-flash:generateContent")
        assert seen["key"] == "g-key"
        assert seen["body"]["contents"] == [{"parts": [{"text": "hi"}]}]
        assert seen["body"]["generationConfig"] == {"maxOutputTokens": 64}

    def test_resource_exhausted_is_quota(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                429, json={"error": {"code": 429, "status": "RESOURCE_EXHAUSTED"}}
            )

        provider = GeminiProvider("gemini-1", "g-key", client=_client(handler))
        with pytest.raises(QuotaExceededError):
            provider.ask("hi")

    def test_no_text_parts(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"candidates": [{"content": {"parts": []}}]})

        provider = GeminiProvider("gemini-1", "g-key", client=_client(handler))
        with pytest.raises(ProviderError, match="no text parts"):
            provider.ask("hi")

    def test_no_candidates(self):
        provider = GeminiProvider(
            "gemini-1", "g-key", client=_client(lambda r: httpx.Response(200, json={}))
        )
        with pytest.raises(ProviderError):
            provider.ask("hi")


class TestInvalidURL:
    """Tests for providers configured with a malformed base URL."""

    @staticmethod
    def _provider():
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_completion("unreachable"))

        return OpenAICompatibleProvider(
            "deepseek",
            "k",
            "deepseek-chat",
            base_url="https://api.deep\x00seek.com/v1",
            client=_client(handler),
        )

    def test_invalid_base_url_is_provider_error(self):
        provider = self._provider()
        with pytest.raises(ProviderError, match="invalid URL"):
            provider.ask("q")

    def test_chain_survives_invalid_base_url(self):
        provider = self._provider()
        chain = ProviderChain([provider])
        try:
            result = chain.resolve("q")
        finally:
            chain.close()
        assert result.exhausted
        assert result.text == ALL_PROVIDERS_EXHAUSTED
        assert "invalid URL" in result.error
