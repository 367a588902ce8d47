"""Ordered fallback across answer providers.

Providers are tried in ascending priority. One that reports exhausted quota
is blocked for a while and skipped without a network call; any other failure
just moves on to the next provider. When nothing answers, the caller gets a
sentinel Resolution instead of an exception.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass

from craftwatch.errors import ProviderError, QuotaExceededError
from craftwatch.logging import get_logger
from craftwatch.metrics import PROVIDER_REQUESTS

from .providers import AnswerProvider

logger = get_logger(__name__)

ALL_PROVIDERS_EXHAUSTED = "All AI providers are unavailable right now, try again later."

DEFAULT_TIMEOUT_SECONDS = 25.0
DEFAULT_QUOTA_BLOCK_SECONDS = 3600.0
DEFAULT_MAX_ANSWER_CHARS = 800
TRUNCATION_MARKER = "..."


def truncate_answer(text: str, limit: int = DEFAULT_MAX_ANSWER_CHARS) -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut."""
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + TRUNCATION_MARKER


@dataclass
class ProviderConfig:
    """Chain bookkeeping for one provider."""

    name: str
    priority: int
    quota_blocked_until: float | None = None

    def is_blocked(self, now: float) -> bool:
        return self.quota_blocked_until is not None and now < self.quota_blocked_until


@dataclass(frozen=True)
class Resolution:
    """Outcome of one ``ProviderChain.resolve`` call."""

    text: str
    provider: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.provider is not None

    @property
    def exhausted(self) -> bool:
        return self.provider is None


class ProviderChain:
    """Resolves questions through providers in priority order."""

    def __init__(
        self,
        providers: Iterable[AnswerProvider] = (),
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        quota_block_seconds: float = DEFAULT_QUOTA_BLOCK_SECONDS,
        max_answer_chars: int = DEFAULT_MAX_ANSWER_CHARS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the chain.

        Args:
            providers: Providers in priority order (first is tried first)
            timeout: Per-provider time limit in seconds
            quota_block_seconds: How long a quota-exhausted provider is skipped
            max_answer_chars: Answers longer than this are truncated
            clock: Monotonic time source
        """
        self.timeout = timeout
        self.quota_block_seconds = quota_block_seconds
        self.max_answer_chars = max_answer_chars
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: list[tuple[ProviderConfig, AnswerProvider]] = []
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="provider")
        for priority, provider in enumerate(providers):
            self.add(provider, priority)

    def add(self, provider: AnswerProvider, priority: int | None = None) -> ProviderConfig:
        """Register a provider. Equal priorities keep registration order."""
        with self._lock:
            if priority is None:
                priority = len(self._entries)
            config = ProviderConfig(name=provider.name, priority=priority)
            self._entries.append((config, provider))
            self._entries.sort(key=lambda entry: entry[0].priority)
        return config

    @property
    def configs(self) -> list[ProviderConfig]:
        with self._lock:
            return [config for config, _ in self._entries]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _call(self, provider: AnswerProvider, question: str, max_tokens: int) -> str:
        future = self._executor.submit(provider.ask, question, max_tokens, self.timeout)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout as e:
            future.cancel()
            raise ProviderError(f"{provider.name} timed out after {self.timeout}s") from e

    def _block(self, config: ProviderConfig, error: QuotaExceededError) -> None:
        seconds = max(self.quota_block_seconds, error.retry_after or 0.0)
        with self._lock:
            config.quota_blocked_until = self._clock() + seconds
        logger.warning(f"Provider {config.name} blocked for {seconds:.0f}s: {error}")

    def resolve(self, question: str, max_tokens: int = 300) -> Resolution:
        """Ask each provider in turn until one answers.

        Never raises for provider failures; when every provider fails or is
        blocked the returned Resolution carries ``ALL_PROVIDERS_EXHAUSTED``.
        """
        last_error: str | None = None
        with self._lock:
            entries = list(self._entries)

        for config, provider in entries:
            if config.is_blocked(self._clock()):
                PROVIDER_REQUESTS.labels(provider=config.name, status="skipped").inc()
                logger.debug(f"Skipping {config.name}: quota blocked")
                continue

            try:
                answer = self._call(provider, question, max_tokens)
            except QuotaExceededError as e:
                PROVIDER_REQUESTS.labels(provider=config.name, status="quota").inc()
                self._block(config, e)
                last_error = str(e)
                continue
            except ProviderError as e:
                PROVIDER_REQUESTS.labels(provider=config.name, status="error").inc()
                logger.warning(f"Provider {config.name} failed: {e}")
                last_error = str(e)
                continue
            except Exception as e:
                PROVIDER_REQUESTS.labels(provider=config.name, status="error").inc()
                logger.exception(f"Provider {config.name} raised an unexpected error")
                last_error = f"{config.name}: {e!r}"
                continue

            if not answer.strip():
                PROVIDER_REQUESTS.labels(provider=config.name, status="error").inc()
                logger.warning(f"Provider {config.name} returned an empty answer")
                last_error = f"{config.name} returned an empty answer"
                continue

            PROVIDER_REQUESTS.labels(provider=config.name, status="success").inc()
            logger.info(f"Answered by {config.name} ({len(answer)} chars)")
            return Resolution(
                text=truncate_answer(answer.strip(), self.max_answer_chars),
                provider=config.name,
            )

        logger.error(f"All providers exhausted, last error: {last_error}")
        return Resolution(text=ALL_PROVIDERS_EXHAUSTED, error=last_error)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        for _, provider in self._entries:
            close = getattr(provider, "close", None)
            if close is not None:
                close()
