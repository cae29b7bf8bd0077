"""
ThreadSync - bridge between semantic threads and the protocol's native
reply relation (m.thread).

Thread messages are posted as replies to a root event; thread metadata is
kept as one room state blob per root event. Every operation catches and
logs its failures and returns None/empty instead of raising.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Any, Optional

from protocol import ProtocolClient, TimelineEvent, MESSAGE_EVENT_TYPE, THREAD_RELATION
from utils import now_ms
from .adapters import matrix_adapter
from .models import Thread, ThreadMessage

logger = logging.getLogger(__name__)

METADATA_EVENT_TYPE = "io.threadweave.thread.metadata"


@dataclass
class ThreadMetadata:
    """Structured blob stored in room state, keyed by the thread root id."""
    title: str
    description: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    branches: List[Dict[str, Any]] = field(default_factory=list)
    created_by: Optional[str] = None
    created_at: int = 0
    updated_at: int = 0

    def to_content(self) -> Dict[str, Any]:
        """Wire form (camelCase keys)."""
        return {
            "title": self.title,
            "description": self.description,
            "tags": list(self.tags),
            "branches": list(self.branches),
            "createdBy": self.created_by,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_content(cls, content: Dict[str, Any]) -> 'ThreadMetadata':
        return cls(
            title=content.get("title", ""),
            description=content.get("description"),
            tags=list(content.get("tags") or []),
            branches=list(content.get("branches") or []),
            created_by=content.get("createdBy"),
            created_at=content.get("createdAt", 0),
            updated_at=content.get("updatedAt", 0),
        )

    @classmethod
    def from_thread(cls, thread: Thread, created_by: Optional[str] = None) -> 'ThreadMetadata':
        return cls(
            title=thread.title,
            description=thread.description,
            tags=list(thread.tags),
            branches=[b.to_dict() for b in thread.all_branches()],
            created_by=created_by or thread.created_by,
            created_at=thread.created_at,
            updated_at=thread.updated_at,
        )


def _message_content(body: str) -> Dict[str, Any]:
    return {
        "body": body,
        "msgtype": "m.text",
        "format": "org.matrix.custom.html",
        "formatted_body": body.replace("\n", "<br/>"),
    }


class ThreadSync:
    """
    Synchronizes threads with protocol-native threading.

    Consistency with local state is best-effort: a None result means the
    operation did not happen and may be retried.
    """

    def __init__(self, client: Optional[ProtocolClient] = None):
        self.client = client

    def set_client(self, client: ProtocolClient):
        """Set the protocol client (call when the client is ready)."""
        self.client = client

    # ─────────────────────────────────────────────────────────────────────────
    # Posting
    # ─────────────────────────────────────────────────────────────────────────

    async def create_thread_root(self, room_id: str, content: str) -> Optional[str]:
        """Post a plain message whose event id becomes the thread's external key."""
        if not self.client:
            logger.error("Protocol client not initialized")
            return None

        try:
            event_id = await self.client.send_event(room_id, MESSAGE_EVENT_TYPE, _message_content(content))
            logger.info(f"Thread root created: {event_id}")
            return event_id
        except Exception as e:
            logger.error(f"Failed to create thread root in {room_id}: {e}")
            return None

    async def send_message_to_thread(self, room_id: str, content: str, root_event_id: str) -> Optional[str]:
        """Post a message carrying a thread relation to `root_event_id`."""
        if not self.client:
            logger.error("Protocol client not initialized")
            return None

        message_content = _message_content(content)
        message_content["m.relates_to"] = {
            "rel_type": THREAD_RELATION,
            "event_id": root_event_id,
        }

        try:
            event_id = await self.client.send_event(room_id, MESSAGE_EVENT_TYPE, message_content)
            logger.info(f"Message sent to thread {root_event_id}: {event_id}")
            return event_id
        except Exception as e:
            logger.error(f"Failed to send message to thread {root_event_id}: {e}")
            return None

    # ─────────────────────────────────────────────────────────────────────────
    # Metadata (room state, last write wins)
    # ─────────────────────────────────────────────────────────────────────────

    async def store_thread_metadata(
        self,
        room_id: str,
        root_event_id: str,
        metadata: ThreadMetadata
    ) -> Optional[str]:
        if not self.client:
            logger.error("Protocol client not initialized")
            return None

        try:
            event_id = await self.client.send_state_event(
                room_id, METADATA_EVENT_TYPE, root_event_id, metadata.to_content()
            )
            logger.debug(f"Stored metadata for thread {root_event_id}")
            return event_id
        except Exception as e:
            logger.error(f"Failed to store metadata for thread {root_event_id}: {e}")
            return None

    async def load_thread_metadata(self, room_id: str, root_event_id: str) -> Optional[ThreadMetadata]:
        if not self.client:
            logger.error("Protocol client not initialized")
            return None

        try:
            content = await self.client.get_state_event(room_id, METADATA_EVENT_TYPE, root_event_id)
        except Exception as e:
            logger.error(f"Failed to load metadata for thread {root_event_id}: {e}")
            return None

        if not content:
            return None
        return ThreadMetadata.from_content(content)

    async def update_thread_metadata(
        self,
        room_id: str,
        root_event_id: str,
        **updates: Any
    ) -> Optional[ThreadMetadata]:
        """
        Read-modify-write the metadata blob.

        Args:
            room_id: Room holding the thread
            root_event_id: Thread root (state key)
            **updates: Field values to replace (title, description, tags, ...)

        Returns:
            The stored metadata, or None if the write did not happen
        """
        unknown = set(updates) - set(ThreadMetadata.__dataclass_fields__)
        if unknown:
            logger.error(f"Unknown metadata fields: {sorted(unknown)}")
            return None

        if not self.client:
            logger.error("Protocol client not initialized")
            return None

        # A failed read must not turn into a blind overwrite
        try:
            content = await self.client.get_state_event(room_id, METADATA_EVENT_TYPE, root_event_id)
        except Exception as e:
            logger.error(f"Failed to read metadata for thread {root_event_id}, update skipped: {e}")
            return None

        data = asdict(ThreadMetadata.from_content(content)) if content else {"title": ""}
        data.update(updates)
        now = now_ms()
        data["updated_at"] = now
        if not data.get("created_at"):
            data["created_at"] = now
        metadata = ThreadMetadata(**data)

        if await self.store_thread_metadata(room_id, root_event_id, metadata) is None:
            return None
        return metadata

    # ─────────────────────────────────────────────────────────────────────────
    # Reading the loaded timeline
    # ─────────────────────────────────────────────────────────────────────────

    def _timeline(self, room_id: str) -> List[TimelineEvent]:
        if not self.client:
            logger.error("Protocol client not initialized")
            return []
        return self.client.get_timeline(room_id)

    async def load_timeline(self, room_id: str) -> List[TimelineEvent]:
        """Fetch the latest timeline page from the server into the loaded window."""
        if not self.client:
            logger.error("Protocol client not initialized")
            return []

        try:
            return await self.client.load_timeline(room_id)
        except Exception as e:
            logger.error(f"Failed to load timeline for room {room_id}: {e}")
            return []

    def load_threads_from_room(self, room_id: str) -> Dict[str, List[TimelineEvent]]:
        """
        Group loaded room messages by their thread root.

        Only the currently loaded timeline window is scanned; threads outside
        it stay invisible until more history is fetched.
        """
        threads: Dict[str, List[TimelineEvent]] = {}
        try:
            for event in self._timeline(room_id):
                if event.type != MESSAGE_EVENT_TYPE:
                    continue
                root_id = event.thread_root_id
                if root_id:
                    threads.setdefault(root_id, []).append(event)
        except Exception as e:
            logger.error(f"Failed to load threads from room {room_id}: {e}")
            return {}

        logger.info(f"Loaded {len(threads)} threads from room {room_id}")
        return threads

    def get_thread_root(self, room_id: str, root_event_id: str) -> Optional[TimelineEvent]:
        try:
            for event in self._timeline(room_id):
                if event.event_id == root_event_id:
                    return event
        except Exception as e:
            logger.error(f"Failed to get thread root {root_event_id}: {e}")
            return None

        logger.warning(f"Thread root not found: {root_event_id}")
        return None

    def get_thread_messages(self, room_id: str, root_event_id: str) -> List[TimelineEvent]:
        """Root plus replies, sorted by server timestamp."""
        try:
            messages = []
            root = self.get_thread_root(room_id, root_event_id)
            if root:
                messages.append(root)

            for event in self._timeline(room_id):
                if event.type == MESSAGE_EVENT_TYPE and event.thread_root_id == root_event_id:
                    messages.append(event)

            return sorted(messages, key=lambda e: e.origin_server_ts)
        except Exception as e:
            logger.error(f"Failed to get messages for thread {root_event_id}: {e}")
            return []

    def event_to_thread_message(self, event: TimelineEvent) -> Optional[ThreadMessage]:
        """Convert a timeline event, or None if it is malformed."""
        try:
            return matrix_adapter(event)
        except Exception as e:
            logger.error(f"Failed to convert event to thread message: {e}")
            return None

    def supports_threads(self, room_id: str) -> bool:
        # Thread relations are part of every current room version
        return self.client is not None

    def get_thread_stats(self, room_id: str, root_event_id: str) -> Dict[str, Any]:
        messages = self.get_thread_messages(room_id, root_event_id)
        participants = sorted({m.sender for m in messages if m.sender})
        now = now_ms()
        return {
            "message_count": len(messages),
            "participant_count": len(participants),
            "participants": participants,
            "created_at": messages[0].origin_server_ts if messages else now,
            "updated_at": messages[-1].origin_server_ts if messages else now,
        }
