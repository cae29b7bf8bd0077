"""
Base classes for AI summary providers.

Provides the abstract interface every summary backend implements. A
provider is an async callable: transcript in, summary text out.
"""

from abc import ABC, abstractmethod


class SummaryProvider(ABC):
    """
    Abstract base class for summary providers.

    Each provider handles:
    - Prompt construction for its API
    - API communication
    - Response parsing
    """

    @abstractmethod
    async def summarize(self, transcript: str) -> str:
        """
        Summarize a thread transcript.

        Args:
            transcript: Title/description header plus `sender: content` lines

        Returns:
            Summary text
        """
        pass

    async def __call__(self, transcript: str) -> str:
        return await self.summarize(transcript)
