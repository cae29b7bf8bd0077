"""
OpenRouter summary provider.

Uses the OpenAI-compatible API via OpenRouter.
"""

from openai import AsyncOpenAI

from ai.prompts import SUMMARY_PROMPT
from .base import SummaryProvider


OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "openai/gpt-oss-20b"


class OpenRouterSummaryProvider(SummaryProvider):
    """Summaries from any chat model served by OpenRouter."""

    def __init__(self, api_key: str, model: str = None, client: AsyncOpenAI = None):
        """
        Initialize OpenRouter provider.

        Args:
            api_key: OpenRouter API key
            model: Model name (optional, uses default)
            client: Preconfigured client (optional)
        """
        self.client = client or AsyncOpenAI(
            base_url=OPENROUTER_BASE_URL,
            api_key=api_key,
        )
        self.model_name = model or DEFAULT_MODEL

    async def summarize(self, transcript: str) -> str:
        completion = await self.client.chat.completions.create(
            model=self.model_name,
            messages=[
                {"role": "system", "content": SUMMARY_PROMPT},
                {"role": "user", "content": transcript},
            ],
        )
        content = completion.choices[0].message.content
        if not content:
            raise ValueError(f"Empty summary from {self.model_name}")
        return content.strip()
