"""
Protocol collaborators.

Provides a unified interface to the messaging protocol the threads are
mirrored into:
- MatrixClient (homeserver client-server API over HTTP)
- InMemoryProtocolClient (local only, used for development and tests)
"""

from .base import ProtocolClient, ProtocolError, TimelineEvent, MESSAGE_EVENT_TYPE, THREAD_RELATION
from .matrix import MatrixClient
from .memory import InMemoryProtocolClient

__all__ = [
    "ProtocolClient",
    "ProtocolError",
    "TimelineEvent",
    "MESSAGE_EVENT_TYPE",
    "THREAD_RELATION",
    "MatrixClient",
    "InMemoryProtocolClient",
    "create_protocol_client",
]


def create_protocol_client() -> ProtocolClient:
    """Build the client selected by PROTOCOL_BACKEND."""
    import config

    if config.PROTOCOL_BACKEND == "matrix":
        return MatrixClient(
            homeserver=config.MATRIX_HOMESERVER,
            access_token=config.MATRIX_ACCESS_TOKEN,
            user_id=config.MATRIX_USER_ID,
        )
    return InMemoryProtocolClient(user_id=config.MATRIX_USER_ID or InMemoryProtocolClient.DEFAULT_USER_ID)
