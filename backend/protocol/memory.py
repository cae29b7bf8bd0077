"""
In-memory protocol client.

Keeps rooms, timelines and state in process memory. No network calls are
made, so thread sync can run locally and deterministically in tests.
"""

import copy
import uuid
from typing import Dict, List, Any, Optional, Tuple

from utils import now_ms
from .base import ProtocolClient, TimelineEvent


class InMemoryProtocolClient(ProtocolClient):
    """Protocol client backed by dictionaries."""

    DEFAULT_USER_ID = "@local:localhost"

    def __init__(self, user_id: str = DEFAULT_USER_ID):
        self.user_id = user_id

        # room_id -> events, oldest first
        self._timelines: Dict[str, List[TimelineEvent]] = {}

        # (room_id, event_type, state_key) -> content
        self._state: Dict[Tuple[str, str, str], Dict[str, Any]] = {}

    @staticmethod
    def _new_event_id() -> str:
        return f"${uuid.uuid4().hex}"

    def add_event(self, event: TimelineEvent) -> None:
        """Inject an event as if it arrived from another client."""
        self._timelines.setdefault(event.room_id, []).append(event)

    async def send_event(self, room_id: str, event_type: str, content: Dict[str, Any]) -> str:
        event = TimelineEvent(
            event_id=self._new_event_id(),
            room_id=room_id,
            sender=self.user_id,
            type=event_type,
            origin_server_ts=now_ms(),
            content=copy.deepcopy(content),
        )
        self.add_event(event)
        return event.event_id

    async def send_state_event(
        self,
        room_id: str,
        event_type: str,
        state_key: str,
        content: Dict[str, Any]
    ) -> str:
        self._state[(room_id, event_type, state_key)] = copy.deepcopy(content)
        return self._new_event_id()

    async def get_state_event(
        self,
        room_id: str,
        event_type: str,
        state_key: str
    ) -> Optional[Dict[str, Any]]:
        content = self._state.get((room_id, event_type, state_key))
        return copy.deepcopy(content) if content is not None else None

    def get_timeline(self, room_id: str) -> List[TimelineEvent]:
        return list(self._timelines.get(room_id, []))
