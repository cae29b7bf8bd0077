"""Tests for AI summary providers."""
from types import SimpleNamespace

import pytest
import config
from ai.adapters import (
    MockSummaryProvider,
    OpenRouterSummaryProvider,
    create_summary_provider,
)
from ai.prompts import SUMMARY_PROMPT


class FakeCompletions:
    """Stands in for client.chat.completions"""

    def __init__(self, content):
        self.content = content
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_client(content):
    completions = FakeCompletions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


class TestMockSummaryProvider:

    @pytest.mark.asyncio
    async def test_deterministic_summary(self):
        provider = MockSummaryProvider()
        transcript = "Thread: Launch\nDescription: N/A\n\nMessages:\nalice: hi\n\nbob: hello"

        assert await provider(transcript) == "Mock summary of 'Launch' (2 messages)"
        assert provider.calls == [transcript]


class TestOpenRouterSummaryProvider:

    @pytest.mark.asyncio
    async def test_sends_prompt_and_transcript(self):
        client, completions = fake_client("  Short summary.  ")
        provider = OpenRouterSummaryProvider(api_key="test", model="some/model", client=client)

        summary = await provider("Thread: Launch")

        assert summary == "Short summary."
        call = completions.calls[0]
        assert call["model"] == "some/model"
        assert call["messages"][0] == {"role": "system", "content": SUMMARY_PROMPT}
        assert call["messages"][1] == {"role": "user", "content": "Thread: Launch"}

    @pytest.mark.asyncio
    async def test_empty_response_raises(self):
        client, _ = fake_client(None)
        provider = OpenRouterSummaryProvider(api_key="test", client=client)

        with pytest.raises(ValueError):
            await provider("Thread: Launch")


class TestCreateSummaryProvider:

    def test_mock_provider(self, monkeypatch):
        monkeypatch.setattr(config, "LLM_PROVIDER", "mock")

        assert isinstance(create_summary_provider(), MockSummaryProvider)

    def test_no_key_disables_ai(self, monkeypatch):
        monkeypatch.setattr(config, "LLM_PROVIDER", "openrouter")
        monkeypatch.setattr(config, "OPENROUTER_API_KEY", None)

        assert create_summary_provider() is None

    def test_openrouter_with_key(self, monkeypatch):
        monkeypatch.setattr(config, "LLM_PROVIDER", "openrouter")
        monkeypatch.setattr(config, "OPENROUTER_API_KEY", "sk-test")
        monkeypatch.setattr(config, "LLM_MODEL", "some/model")

        provider = create_summary_provider()

        assert isinstance(provider, OpenRouterSummaryProvider)
        assert provider.model_name == "some/model"
