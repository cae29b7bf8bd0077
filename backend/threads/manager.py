"""
ThreadManager - authoritative in-memory store of threads.

Handles:
- Thread lifecycle (create, archive, delete)
- Message placement into branches
- Branch creation and merging
- Local heuristics used by the linker (similarity, branch keywords, topics)

Containers are not synchronized. All calls must come from one owner
(the event loop driving ThreadService).
"""

import logging
import re
from dataclasses import replace
from typing import Dict, Any, Optional, List, Iterable, Union

from utils import now_ms, unique_suffix
from .models import (
    Thread,
    ThreadMessage,
    ThreadBranch,
    ContextualObject,
    LinkingConfig,
)

logger = logging.getLogger(__name__)

HASHTAG_PATTERN = re.compile(r"#(\w+)")
CAPITALIZED_PHRASE_PATTERN = re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*")
MAX_PHRASE_TOPICS = 3


class ThreadManager:
    """
    Creates, mutates and indexes threads.

    Mutators never raise for unknown ids: they return False/None.
    """

    def __init__(self, config: Union[LinkingConfig, Dict[str, Any], None] = None):
        if isinstance(config, LinkingConfig):
            self.config = config
        else:
            # Partial overrides on top of the defaults
            self.config = replace(LinkingConfig(), **(config or {}))

        # thread_id -> Thread
        self.threads: Dict[str, Thread] = {}

        # message_id -> thread_id
        self.message_to_thread: Dict[str, str] = {}

    # ─────────────────────────────────────────────────────────────────────────
    # Thread Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def create_thread(
        self,
        thread_id: str,
        room_id: str,
        title: str,
        description: Optional[str] = None
    ) -> Thread:
        """Create an empty thread with a fresh main branch (replaces any thread with the same id)."""
        existing = self.threads.get(thread_id)
        if existing:
            logger.warning(f"Thread {thread_id} already exists, replacing it")
            self._unindex_messages(existing)

        now = now_ms()
        thread = Thread(
            id=thread_id,
            room_id=room_id,
            title=title,
            description=description,
            main_branch=ThreadBranch(
                id=f"{thread_id}-main",
                topic="Main Discussion",
                created_at=now,
            ),
            created_at=now,
            updated_at=now,
        )
        self.threads[thread_id] = thread
        return thread

    def load_threads(self, threads: Iterable[Thread]) -> int:
        """Adopt previously persisted threads, rebuilding the reverse index."""
        count = 0
        for thread in threads:
            self.threads[thread.id] = thread
            for message_id in thread.messages:
                self.message_to_thread[message_id] = thread.id
            count += 1
        return count

    def archive_thread(self, thread_id: str) -> bool:
        """Soft removal: the thread stays but leaves active views."""
        thread = self.threads.get(thread_id)
        if not thread:
            return False

        now = now_ms()
        thread.archived_at = now
        thread.updated_at = max(thread.updated_at, now)
        return True

    def delete_thread(self, thread_id: str) -> bool:
        """Hard removal, including the message reverse index."""
        thread = self.threads.pop(thread_id, None)
        if not thread:
            return False

        self._unindex_messages(thread)
        for other_id in thread.related_thread_ids:
            other = self.threads.get(other_id)
            if other:
                other.related_thread_ids.discard(thread_id)
        return True

    def _unindex_messages(self, thread: Thread) -> None:
        for message_id in thread.messages:
            if self.message_to_thread.get(message_id) == thread.id:
                del self.message_to_thread[message_id]

    # ─────────────────────────────────────────────────────────────────────────
    # Messages and Branches
    # ─────────────────────────────────────────────────────────────────────────

    def add_message_to_thread(
        self,
        thread_id: str,
        message: ThreadMessage,
        branch_id: Optional[str] = None
    ) -> bool:
        """
        Add a message to a thread branch.

        Args:
            thread_id: Target thread
            message: Message to add
            branch_id: Target branch (main branch when omitted or unknown)

        Returns:
            False if the thread is unknown, True otherwise
        """
        thread = self.threads.get(thread_id)
        if not thread:
            return False

        if message.id in thread.messages:
            # Same id again: the new message wins and moves to the new branch
            for branch in thread.all_branches():
                if message.id in branch.message_ids:
                    branch.message_ids.remove(message.id)

        thread.messages[message.id] = message
        thread.participants.add(message.sender.id)
        thread.updated_at = max(now_ms(), thread.updated_at, message.timestamp)

        target = thread.find_branch(branch_id) if branch_id else None
        (target or thread.main_branch).message_ids.append(message.id)

        self.message_to_thread[message.id] = thread_id
        return True

    def create_branch(
        self,
        thread_id: str,
        parent_message_id: Optional[str],
        topic: str,
        description: Optional[str] = None
    ) -> Optional[ThreadBranch]:
        """Create an empty sub-branch stemming from `parent_message_id`."""
        thread = self.threads.get(thread_id)
        if not thread:
            return None

        now = now_ms()
        branch = ThreadBranch(
            id=f"{thread_id}-branch-{unique_suffix()}",
            parent_message_id=parent_message_id,
            topic=topic,
            description=description,
            created_at=now,
        )
        thread.branches[branch.id] = branch
        thread.updated_at = max(thread.updated_at, now)
        return branch

    def merge_branches(
        self,
        thread_id: str,
        source_branch_id: str,
        target_branch_id: Optional[str] = None
    ) -> bool:
        """
        Append the source branch's messages to the target and drop the source.

        The target defaults to the main branch. The main branch can never be
        a source.
        """
        thread = self.threads.get(thread_id)
        if not thread:
            return False

        source = thread.branches.get(source_branch_id)
        if not source:
            return False

        target = thread.find_branch(target_branch_id) if target_branch_id else None
        target = target or thread.main_branch
        if target is source:
            return False

        target.message_ids.extend(source.message_ids)
        del thread.branches[source_branch_id]
        thread.updated_at = max(thread.updated_at, now_ms())
        return True

    def attach_contextual_object(
        self,
        thread_id: str,
        message_id: str,
        obj: ContextualObject
    ) -> bool:
        thread = self.threads.get(thread_id)
        if not thread:
            return False

        message = thread.messages.get(message_id)
        if not message:
            return False

        message.contextual_objects.append(obj)
        thread.updated_at = max(thread.updated_at, now_ms())
        return True

    # ─────────────────────────────────────────────────────────────────────────
    # Local Heuristics
    # ─────────────────────────────────────────────────────────────────────────

    def detect_related_messages(
        self,
        messages: Iterable[ThreadMessage],
        reference: ThreadMessage
    ) -> List[str]:
        """Ids of messages close in time and in wording to `reference`."""
        related = []
        for message in messages:
            if message.id == reference.id:
                continue

            if abs(message.timestamp - reference.timestamp) > self.config.context_window_ms:
                continue

            similarity = self.calculate_similarity(reference.content, message.content)
            if similarity >= self.config.similarity_threshold:
                related.append(message.id)

        return related

    def should_create_branch(self, message: ThreadMessage) -> bool:
        content = message.content.lower()
        return any(keyword in content for keyword in self.config.branch_keywords)

    def extract_topics(self, content: str) -> List[str]:
        """Hashtags plus up to three capitalized phrases, deduplicated in order."""
        hashtags = HASHTAG_PATTERN.findall(content)
        phrases = [
            phrase for phrase in CAPITALIZED_PHRASE_PATTERN.findall(content)
            if len(phrase) > 3
        ][:MAX_PHRASE_TOPICS]
        return list(dict.fromkeys(hashtags + phrases))

    @staticmethod
    def calculate_similarity(text1: str, text2: str) -> float:
        """Jaccard overlap of lower-cased whitespace-separated words (0-1)."""
        words1 = set(text1.lower().split())
        words2 = set(text2.lower().split())

        union = words1 | words2
        if not union:
            return 0.0
        return len(words1 & words2) / len(union)

    # ─────────────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────────────

    def get_thread(self, thread_id: str) -> Optional[Thread]:
        return self.threads.get(thread_id)

    def get_thread_by_message_id(self, message_id: str) -> Optional[Thread]:
        thread_id = self.message_to_thread.get(message_id)
        return self.threads.get(thread_id) if thread_id else None

    def get_all_threads(self) -> List[Thread]:
        return list(self.threads.values())

    def get_threads_in_room(self, room_id: str, include_archived: bool = True) -> List[Thread]:
        return [
            t for t in self.threads.values()
            if t.room_id == room_id and (include_archived or not t.is_archived)
        ]

    def get_active_threads(self, room_id: Optional[str] = None) -> List[Thread]:
        """Threads that are not archived, optionally limited to one room."""
        return [
            t for t in self.threads.values()
            if not t.is_archived and (room_id is None or t.room_id == room_id)
        ]

    def link_threads(self, thread_id1: str, thread_id2: str) -> bool:
        """Mark two threads as related (symmetric)."""
        thread1 = self.threads.get(thread_id1)
        thread2 = self.threads.get(thread_id2)
        if not thread1 or not thread2 or thread1 is thread2:
            return False

        thread1.related_thread_ids.add(thread_id2)
        thread2.related_thread_ids.add(thread_id1)
        return True

    def get_related_threads(self, thread_id: str) -> List[Thread]:
        thread = self.threads.get(thread_id)
        if not thread:
            return []
        return [self.threads[tid] for tid in sorted(thread.related_thread_ids) if tid in self.threads]

    def get_thread_stats(self, thread_id: str) -> Optional[Dict[str, Any]]:
        thread = self.threads.get(thread_id)
        if not thread:
            return None

        return {
            "message_count": len(thread.messages),
            "participant_count": len(thread.participants),
            "branch_count": len(thread.branches),
            "created_at": thread.created_at,
            "updated_at": thread.updated_at,
            "is_archived": thread.is_archived,
        }
