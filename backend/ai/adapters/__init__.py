"""
AI summary providers.

Provides a unified interface for different summary backends:
- OpenRouter (OpenAI-compatible API)
- Mock (deterministic, no network)
"""

from typing import Optional

from .base import SummaryProvider
from .openrouter import OpenRouterSummaryProvider
from .mock import MockSummaryProvider

__all__ = [
    "SummaryProvider",
    "OpenRouterSummaryProvider",
    "MockSummaryProvider",
    "create_summary_provider",
]


def create_summary_provider() -> Optional[SummaryProvider]:
    """Provider selected by LLM_PROVIDER, or None when AI summaries are unavailable."""
    import config

    if config.LLM_PROVIDER == "mock":
        return MockSummaryProvider()
    if config.OPENROUTER_API_KEY:
        return OpenRouterSummaryProvider(api_key=config.OPENROUTER_API_KEY, model=config.LLM_MODEL)
    return None
