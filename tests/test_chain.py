"""Tests for the provider fallback chain."""

import threading

import pytest
from conftest import FakeProvider

from craftwatch.errors import ProviderError, QuotaExceededError
from craftwatch.llm.chain import (
    ALL_PROVIDERS_EXHAUSTED,
    ProviderChain,
    truncate_answer,
)


class SlowProvider:
    """Blocks until released, standing in for a hung HTTP call."""

    def __init__(self, name: str):
        self.name = name
        self.release = threading.Event()
        self.calls = 0

    def ask(self, question: str, max_tokens: int = 300, timeout: float = 25.0) -> str:
        self.calls += 1
        self.release.wait(5)
        return "too late"


@pytest.fixture
def make_chain(clock):
    chains = []

    def factory(*providers, **kwargs):
        kwargs.setdefault("clock", clock)
        chain = ProviderChain(providers, **kwargs)
        chains.append(chain)
        return chain

    yield factory
    for chain in chains:
        chain.close()


class TestResolve:
    """Tests for ordered fallback and quota blocking."""

    def test_first_success_wins(self, make_chain):
        a = FakeProvider("a", "from a")
        b = FakeProvider("b", "from b")
        result = make_chain(a, b).resolve("hi")
        assert result.ok
        assert result.text == "from a"
        assert result.provider == "a"
        assert b.calls == []

    def test_quota_then_error_then_success(self, make_chain):
        """A quota-blocked provider is skipped on the next call; a plain error is retried."""
        a = FakeProvider("a", QuotaExceededError("a quota exhausted: HTTP 429"))
        b = FakeProvider("b", ProviderError("b HTTP 500"))
        c = FakeProvider("c", "from c")
        chain = make_chain(a, b, c)

        first = chain.resolve("q1")
        assert first.provider == "c"
        assert len(a.calls) == 1

        second = chain.resolve("q2")
        assert second.provider == "c"
        assert len(a.calls) == 1
        assert len(b.calls) == 2

    def test_quota_block_expires(self, make_chain, clock):
        a = FakeProvider("a", QuotaExceededError("quota"), "a is back")
        b = FakeProvider("b", "from b")
        chain = make_chain(a, b, quota_block_seconds=3600)

        assert chain.resolve("q").provider == "b"
        clock.advance(3599)
        assert chain.resolve("q").provider == "b"
        clock.advance(1)
        assert chain.resolve("q").provider == "a"

    def test_longer_retry_after_wins(self, make_chain, clock):
        a = FakeProvider("a", QuotaExceededError("quota", retry_after=7200))
        chain = make_chain(a, quota_block_seconds=3600)
        chain.resolve("q")
        assert chain.configs[0].quota_blocked_until == clock() + 7200

    def test_all_fail_returns_sentinel(self, make_chain):
        chain = make_chain(
            FakeProvider("a", ProviderError("a HTTP 500")),
            FakeProvider("b", ProviderError("b timeout")),
        )
        result = chain.resolve("q")
        assert result.exhausted
        assert result.text == ALL_PROVIDERS_EXHAUSTED
        assert result.error == "b timeout"

    def test_empty_answer_falls_through(self, make_chain):
        chain = make_chain(FakeProvider("a", "   "), FakeProvider("b", "real"))
        assert chain.resolve("q").provider == "b"

    def test_timeout_falls_through(self, make_chain):
        slow = SlowProvider("slow")
        chain = make_chain(slow, timeout=0.05)
        try:
            result = chain.resolve("q")
        finally:
            slow.release.set()
        assert result.text == ALL_PROVIDERS_EXHAUSTED
        assert "timed out" in result.error
        assert slow.calls == 1

    def test_long_answer_truncated(self, make_chain):
        chain = make_chain(FakeProvider("a", "y" * 5000), max_answer_chars=800)
        text = chain.resolve("q").text
        assert len(text) == 803
        assert text.endswith("...")

    def test_empty_chain_is_exhausted(self, make_chain):
        result = make_chain().resolve("q")
        assert result.exhausted
        assert result.error is None

    def test_add_orders_by_priority(self, make_chain):
        chain = make_chain()
        chain.add(FakeProvider("late", "x"), priority=10)
        chain.add(FakeProvider("early", "y"), priority=1)
        assert [c.name for c in chain.configs] == ["early", "late"]
        assert chain.resolve("q").provider == "early"

    def test_unexpected_error_falls_through(self, make_chain):
        """A provider bug is treated like any other failure."""
        broken = FakeProvider("broken", RuntimeError("unexpected payload"))
        chain = make_chain(broken, FakeProvider("b", "from b"))
        result = chain.resolve("q")
        assert result.provider == "b"
        assert result.text == "from b"

    def test_only_unexpected_errors_give_sentinel(self, make_chain):
        chain = make_chain(
            FakeProvider("a", RuntimeError("boom")),
            FakeProvider("b", KeyError("choices")),
        )
        result = chain.resolve("q")
        assert result.exhausted
        assert result.text == ALL_PROVIDERS_EXHAUSTED
        assert result.error.startswith("b: KeyError")

    def test_len_counts_providers(self, make_chain):
        chain = make_chain(FakeProvider("a", "x"))
        chain.add(FakeProvider("b", "y"))
        assert len(chain) == 2
        assert not make_chain()


class TestTruncate:
    """Tests for answer truncation."""

    def test_short_text_untouched(self):
        assert truncate_answer("short", 10) == "short"

    def test_strips_before_marker(self):
        assert truncate_answer("abc   defgh", 6) == "abc..."
