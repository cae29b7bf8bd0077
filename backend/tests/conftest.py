import pytest
import sys
import os

# Add the parent directory to Python path so we can import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from threads.models import ThreadMessage, MessageSource, Sender  # noqa: E402


@pytest.fixture
def make_message():
    """Factory for canonical messages with sensible defaults"""
    def _make(message_id, content, sender="@alice:example.org", timestamp=1000, source=MessageSource.MATRIX):
        return ThreadMessage(
            id=message_id,
            event_id=message_id,
            source=source,
            sender=Sender(id=sender, name=sender.split(":")[0].lstrip("@")),
            content=content,
            timestamp=timestamp,
        )
    return _make
