"""AI answer providers and the ordered fallback chain."""

from craftwatch.llm.chain import (
    ALL_PROVIDERS_EXHAUSTED,
    ProviderChain,
    ProviderConfig,
    Resolution,
    truncate_answer,
)
from craftwatch.llm.providers import (
    AnswerProvider,
    GeminiProvider,
    OpenAICompatibleProvider,
)

__all__ = [
    "ALL_PROVIDERS_EXHAUSTED",
    "AnswerProvider",
    "GeminiProvider",
    "OpenAICompatibleProvider",
    "ProviderChain",
    "ProviderConfig",
    "Resolution",
    "truncate_answer",
]
