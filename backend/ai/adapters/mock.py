"""
Mock summary provider for testing.

Returns a deterministic summary without making API calls.
"""

from typing import List

from .base import SummaryProvider


class MockSummaryProvider(SummaryProvider):
    """
    Mock provider for tests and offline development.

    Records every transcript it receives.
    """

    def __init__(self, prefix: str = "Mock summary"):
        self.prefix = prefix
        self.calls: List[str] = []

    async def summarize(self, transcript: str) -> str:
        self.calls.append(transcript)
        first_line = transcript.splitlines()[0] if transcript else ""
        message_lines = [line for line in transcript.splitlines() if ": " in line and not line.startswith(("Thread:", "Description:"))]
        return f"{self.prefix} of '{first_line.removeprefix('Thread: ')}' ({len(message_lines)} messages)"
