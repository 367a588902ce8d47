"""Answer providers: Gemini and OpenAI-compatible chat completion endpoints.

Each provider exposes ``ask(question, max_tokens, timeout) -> str`` and
reports failures as ``QuotaExceededError`` (quota or billing exhausted,
worth skipping for a while) or ``ProviderError`` (anything else).
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from craftwatch.errors import ProviderError, QuotaExceededError
from craftwatch.logging import get_logger

logger = get_logger(__name__)

GEMINI_API = "https://generativelanguage.googleapis.com/v1beta"
OPENAI_API = "https://api.openai.com/v1"
DEEPSEEK_API = "https://api.deepseek.com/v1"

# Markers in a 429 body that mean "out of quota" rather than "slow down"
QUOTA_MARKERS = ("quota", "billing", "resource_exhausted", "insufficient_balance")

# Max characters of an error body kept in exception messages
ERROR_BODY_PREVIEW_LENGTH = 200


class AnswerProvider(Protocol):
    name: str

    def ask(self, question: str, max_tokens: int, timeout: float) -> str: ...


def _retry_after(response: httpx.Response) -> float | None:
    try:
        return float(response.headers["Retry-After"])
    except (KeyError, ValueError):
        return None


def raise_for_provider_status(name: str, response: httpx.Response) -> None:
    """Translate an unsuccessful provider response into a domain error.

    HTTP 402 is always quota. HTTP 429 is quota only when the body says so;
    a bare 429 is a transient rate limit and is reported as ProviderError.
    """
    if response.is_success:
        return

    status = response.status_code
    body = response.text[:ERROR_BODY_PREVIEW_LENGTH]
    if status == 402 or (
        status == 429 and any(marker in body.lower() for marker in QUOTA_MARKERS)
    ):
        logger.warning(f"{name} quota exhausted (HTTP {status})")
        raise QuotaExceededError(
            f"{name} quota exhausted: HTTP {status}", retry_after=_retry_after(response)
        )
    logger.error(f"{name} HTTP error {status}: {body}")
    raise ProviderError(f"{name} HTTP {status}")


class _HTTPProvider:
    """Shared request plumbing for JSON-over-HTTP providers."""

    def __init__(self, name: str, client: httpx.Client | None = None):
        self.name = name
        self.client = client or httpx.Client(timeout=30.0)

    def _post(
        self, url: str, payload: dict[str, Any], headers: dict[str, str], timeout: float
    ) -> dict[str, Any]:
        try:
            response = self.client.post(url, json=payload, headers=headers, timeout=timeout)
        except httpx.InvalidURL as e:
            logger.error(f"{self.name} has an invalid URL: {e}")
            raise ProviderError(f"{self.name} invalid URL: {e}") from e
        except httpx.TimeoutException as e:
            logger.error(f"{self.name} timed out after {timeout}s")
            raise ProviderError(f"{self.name} timeout") from e
        except httpx.RequestError as e:
            logger.error(f"{self.name} network error: {e}")
            raise ProviderError(f"{self.name} network error: {e}") from e

        raise_for_provider_status(self.name, response)
        try:
            result: dict[str, Any] = response.json()
        except ValueError as e:
            raise ProviderError(f"{self.name} returned invalid JSON: {e}") from e
        return result

    def close(self) -> None:
        self.client.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class OpenAICompatibleProvider(_HTTPProvider):
    """Provider for OpenAI-compatible ``/chat/completions`` endpoints (OpenAI, DeepSeek)."""

    def __init__(
        self,
        name: str,
        api_key: str,
        model: str,
        base_url: str = OPENAI_API,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        client: httpx.Client | None = None,
    ):
        super().__init__(name, client)
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.system_prompt = system_prompt
        self.temperature = temperature

    def _get_content_from_response(self, result: dict[str, Any]) -> str:
        """Extracts message content from a completion response.

        Raises:
            ProviderError: If the response format is unexpected or malformed.
        """
        try:
            content = result["choices"][0]["message"]["content"]
            if not isinstance(content, str):
                raise TypeError(f"content is not a string, but {type(content).__name__}")
            return content
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"{self.name} returned unexpected response format: {e}") from e

    def ask(self, question: str, max_tokens: int = 300, timeout: float = 25.0) -> str:
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": question})

        result = self._post(
            f"{self.base_url}/chat/completions",
            payload={
                "model": self.model,
                "messages": messages,
                "max_tokens": max_tokens,
                "temperature": self.temperature,
            },
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=timeout,
        )
        return self._get_content_from_response(result).strip()


class GeminiProvider(_HTTPProvider):
    """Provider for the Gemini ``generateContent`` REST API."""

    def __init__(
        self,
        name: str,
        api_key: str,
        model: str = "gemini-2.0-flash",
        base_url: str = GEMINI_API,
        client: httpx.Client | None = None,
    ):
        super().__init__(name, client)
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")

    def _get_content_from_response(self, result: dict[str, Any]) -> str:
        try:
            parts = result["candidates"][0]["content"]["parts"]
            texts = [part["text"] for part in parts if isinstance(part.get("text"), str)]
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ProviderError(f"{self.name} returned unexpected response format: {e}") from e
        if not texts:
            raise ProviderError(f"{self.name} returned no text parts")
        return "\n".join(texts)

    def ask(self, question: str, max_tokens: int = 300, timeout: float = 25.0) -> str:
        result = self._post(
            f"{self.base_url}/models/{self.model}:generateContent",
            payload={
                "contents": [{"parts": [{"text": question}]}],
                "generationConfig": {"maxOutputTokens": max_tokens},
            },
            headers={"X-goog-api-key": self.api_key},
            timeout=timeout,
        )
        return self._get_content_from_response(result).strip()
