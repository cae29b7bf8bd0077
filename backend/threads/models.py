"""
Thread models for the semantic threading system.

A Thread groups related messages from one room (and possibly several
sources) into a main branch plus optional named sub-branches.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Any, Optional, Set


class MessageSource(Enum):
    """Where a message originally came from."""
    MATRIX = "matrix"
    EMAIL = "email"
    SMS = "sms"
    SLACK = "slack"
    CUSTOM = "custom"


class ContextObjectType(Enum):
    """Kind of object attached to a message."""
    DOCUMENT = "document"
    LINK = "link"
    NOTE = "note"
    TASK = "task"
    CODE = "code"
    IMAGE = "image"
    FILE = "file"


@dataclass
class Sender:
    id: str
    name: str
    avatar: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "avatar": self.avatar}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Sender':
        return cls(id=data["id"], name=data.get("name", data["id"]), avatar=data.get("avatar"))


@dataclass
class ContextualObject:
    """A document, link, note or task attached to a message."""
    id: str
    type: ContextObjectType
    title: str
    url: Optional[str] = None
    content: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: int = 0
    updated_at: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "url": self.url,
            "content": self.content,
            "metadata": copy.deepcopy(self.metadata),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ContextualObject':
        return cls(
            id=data["id"],
            type=ContextObjectType(data["type"]),
            title=data["title"],
            url=data.get("url"),
            content=data.get("content"),
            metadata=data.get("metadata") or {},
            created_at=data.get("created_at", 0),
            updated_at=data.get("updated_at", 0),
        )


@dataclass
class ThreadMessage:
    """
    A single message in canonical form, whatever its source.

    Timestamps are epoch milliseconds. `raw_event` keeps the original
    external event for the session only; it is never persisted.
    """
    id: str
    event_id: str
    source: MessageSource
    sender: Sender
    content: str
    timestamp: int
    edited: Optional[int] = None
    reactions: Dict[str, int] = field(default_factory=dict)  # emoji -> count
    contextual_objects: List[ContextualObject] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    raw_event: Any = field(default=None, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "source": self.source.value,
            "sender": self.sender.to_dict(),
            "content": self.content,
            "timestamp": self.timestamp,
            "edited": self.edited,
            "reactions": dict(self.reactions),
            "contextual_objects": [o.to_dict() for o in self.contextual_objects],
            "metadata": copy.deepcopy(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ThreadMessage':
        return cls(
            id=data["id"],
            event_id=data.get("event_id", ""),
            source=MessageSource(data.get("source", "custom")),
            sender=Sender.from_dict(data["sender"]),
            content=data.get("content", ""),
            timestamp=data["timestamp"],
            edited=data.get("edited"),
            reactions=data.get("reactions") or {},
            contextual_objects=[
                ContextualObject.from_dict(o) for o in data.get("contextual_objects", [])
            ],
            metadata=data.get("metadata") or {},
        )


@dataclass
class ThreadBranch:
    """Ordered sub-sequence of a thread's messages (a sub-topic)."""
    id: str
    topic: str
    created_at: int
    parent_message_id: Optional[str] = None
    description: Optional[str] = None
    message_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "topic": self.topic,
            "created_at": self.created_at,
            "parent_message_id": self.parent_message_id,
            "description": self.description,
            "message_ids": list(self.message_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ThreadBranch':
        return cls(
            id=data["id"],
            topic=data.get("topic", ""),
            created_at=data.get("created_at", 0),
            parent_message_id=data.get("parent_message_id"),
            description=data.get("description"),
            message_ids=list(data.get("message_ids", [])),
        )


@dataclass
class Thread:
    """
    Semantic container for related communication.

    Thread = Messages + Main branch + Sub-branches + Cached analysis

    The main branch exists for the whole lifetime of the thread. Set and map
    fields are stored as entry arrays by `to_dict` and rebuilt by `from_dict`.
    """
    id: str
    room_id: str
    title: str
    main_branch: ThreadBranch
    created_at: int
    updated_at: int
    description: Optional[str] = None

    participants: Set[str] = field(default_factory=set)
    tags: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)

    messages: Dict[str, ThreadMessage] = field(default_factory=dict)
    branches: Dict[str, ThreadBranch] = field(default_factory=dict)

    parent_thread_id: Optional[str] = None
    related_thread_ids: Set[str] = field(default_factory=set)

    archived_at: Optional[int] = None
    created_by: Optional[str] = None

    # Protocol-native threading
    root_event_id: Optional[str] = None
    is_native: bool = False

    # On-demand analysis
    summary: Optional[str] = None
    summary_generated_at: Optional[int] = None
    key_points: List[str] = field(default_factory=list)
    action_items: List[str] = field(default_factory=list)

    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def all_branches(self) -> List[ThreadBranch]:
        """Main branch first, then sub-branches in creation order."""
        return [self.main_branch, *self.branches.values()]

    def find_branch(self, branch_id: str) -> Optional[ThreadBranch]:
        if branch_id == self.main_branch.id:
            return self.main_branch
        return self.branches.get(branch_id)

    def sorted_messages(self) -> List[ThreadMessage]:
        """Messages in chronological order."""
        return sorted(self.messages.values(), key=lambda m: m.timestamp)

    def last_message(self) -> Optional[ThreadMessage]:
        last = None
        for message in self.messages.values():
            if last is None or message.timestamp > last.timestamp:
                last = message
        return last

    def to_dict(self) -> Dict[str, Any]:
        """Detached JSON-safe snapshot (sets/maps as entry arrays, nested dicts copied)."""
        return {
            "id": self.id,
            "room_id": self.room_id,
            "title": self.title,
            "description": self.description,
            "main_branch": self.main_branch.to_dict(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "participants": sorted(self.participants),
            "tags": list(self.tags),
            "topics": list(self.topics),
            "messages": [[mid, m.to_dict()] for mid, m in self.messages.items()],
            "branches": [[bid, b.to_dict()] for bid, b in self.branches.items()],
            "parent_thread_id": self.parent_thread_id,
            "related_thread_ids": sorted(self.related_thread_ids),
            "archived_at": self.archived_at,
            "created_by": self.created_by,
            "root_event_id": self.root_event_id,
            "is_native": self.is_native,
            "summary": self.summary,
            "summary_generated_at": self.summary_generated_at,
            "key_points": list(self.key_points),
            "action_items": list(self.action_items),
            "metadata": copy.deepcopy(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Thread':
        return cls(
            id=data["id"],
            room_id=data["room_id"],
            title=data["title"],
            description=data.get("description"),
            main_branch=ThreadBranch.from_dict(data["main_branch"]),
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            participants=set(data.get("participants", [])),
            tags=list(data.get("tags", [])),
            topics=list(data.get("topics", [])),
            messages={mid: ThreadMessage.from_dict(m) for mid, m in data.get("messages", [])},
            branches={bid: ThreadBranch.from_dict(b) for bid, b in data.get("branches", [])},
            parent_thread_id=data.get("parent_thread_id"),
            related_thread_ids=set(data.get("related_thread_ids", [])),
            archived_at=data.get("archived_at"),
            created_by=data.get("created_by"),
            root_event_id=data.get("root_event_id"),
            is_native=data.get("is_native", False),
            summary=data.get("summary"),
            summary_generated_at=data.get("summary_generated_at"),
            key_points=list(data.get("key_points", [])),
            action_items=list(data.get("action_items", [])),
            metadata=data.get("metadata") or {},
        )

    def __repr__(self) -> str:
        return f"Thread(id={self.id}, title='{self.title[:30]}', messages={len(self.messages)})"


@dataclass
class LinkResult:
    """Outcome of routing one message into a thread."""
    thread_id: str
    is_new: bool
    branch_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"thread_id": self.thread_id, "is_new": self.is_new, "branch_id": self.branch_id}


@dataclass
class LinkingConfig:
    """Heuristic knobs for message linking and branch detection."""
    similarity_threshold: float = 0.6
    branch_keywords: List[str] = field(
        default_factory=lambda: ["but", "however", "alternatively", "on the other hand", "meanwhile"]
    )
    context_window_ms: int = 5 * 60 * 1000
    use_local_linking: bool = True

    @classmethod
    def from_env(cls) -> 'LinkingConfig':
        """Build from config.py (which reads .env / environment)."""
        import config
        return cls(
            similarity_threshold=config.SIMILARITY_THRESHOLD,
            branch_keywords=list(config.BRANCH_KEYWORDS),
            context_window_ms=config.CONTEXT_WINDOW_MS,
        )
