"""
Base classes for protocol clients.

Provides the abstract interface the thread sync bridge relies on.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional


MESSAGE_EVENT_TYPE = "m.room.message"
THREAD_RELATION = "m.thread"


class ProtocolError(Exception):
    """A protocol request was rejected or could not be completed."""

    def __init__(self, message: str, status_code: Optional[int] = None, errcode: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.errcode = errcode


@dataclass
class TimelineEvent:
    """A room event as seen in the loaded timeline."""
    event_id: str
    room_id: str
    sender: str
    type: str
    origin_server_ts: int
    content: Dict[str, Any] = field(default_factory=dict)
    state_key: Optional[str] = None

    @property
    def body(self) -> str:
        return self.content.get("body", "")

    @property
    def thread_root_id(self) -> Optional[str]:
        """Root event id if this event is a reply in a protocol thread."""
        relates_to = self.content.get("m.relates_to") or {}
        if relates_to.get("rel_type") == THREAD_RELATION:
            return relates_to.get("event_id")
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "event_id": self.event_id,
            "room_id": self.room_id,
            "sender": self.sender,
            "type": self.type,
            "origin_server_ts": self.origin_server_ts,
            "content": self.content,
        }
        if self.state_key is not None:
            data["state_key"] = self.state_key
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], room_id: Optional[str] = None) -> 'TimelineEvent':
        """Parse a client-server API event (room_id may be implied by the request)."""
        return cls(
            event_id=data["event_id"],
            room_id=data.get("room_id") or room_id or "",
            sender=data.get("sender", ""),
            type=data.get("type", ""),
            origin_server_ts=data.get("origin_server_ts", 0),
            content=data.get("content") or {},
            state_key=data.get("state_key"),
        )


class ProtocolClient(ABC):
    """
    Abstract base class for protocol clients.

    Each client handles:
    - Posting room events (optionally carrying a thread relation)
    - Reading and writing small JSON blobs as room state
    - Exposing the currently loaded room timeline
    """

    user_id: Optional[str] = None

    @abstractmethod
    async def send_event(self, room_id: str, event_type: str, content: Dict[str, Any]) -> str:
        """
        Post an event to a room.

        Returns:
            The event id assigned by the server
        """
        pass

    @abstractmethod
    async def send_state_event(
        self,
        room_id: str,
        event_type: str,
        state_key: str,
        content: Dict[str, Any]
    ) -> str:
        """Write room state under (event_type, state_key). Returns the event id."""
        pass

    @abstractmethod
    async def get_state_event(
        self,
        room_id: str,
        event_type: str,
        state_key: str
    ) -> Optional[Dict[str, Any]]:
        """Read room state content, or None when nothing is stored."""
        pass

    @abstractmethod
    def get_timeline(self, room_id: str) -> List[TimelineEvent]:
        """Events currently loaded for a room, oldest first. No pagination."""
        pass

    async def load_timeline(self, room_id: str) -> List[TimelineEvent]:
        """
        Refresh the loaded window of a room from the server.

        Clients that hold their timeline locally have nothing to fetch and
        return the current window unchanged.
        """
        return self.get_timeline(room_id)

    async def close(self):
        """Release client resources."""
        pass
