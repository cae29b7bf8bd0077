"""
ThreadLinker - routes incoming messages into threads and branches.

Scores candidate threads with local heuristics (shared participant, topic
overlap, recency) and either extends the best match or starts a new thread.
"""

import logging
import re
from typing import Dict, Any, Optional, List, Iterable, Union

from utils import unique_suffix
from .adapters import DEFAULT_ADAPTERS, SourceAdapter
from .manager import ThreadManager
from .models import Thread, ThreadMessage, MessageSource, LinkResult

logger = logging.getLogger(__name__)

PARTICIPANT_WEIGHT = 0.3
TOPIC_WEIGHT = 0.4
RECENCY_WEIGHT = 0.3
RECENCY_WINDOW_MS = 30 * 60 * 1000
MATCH_THRESHOLD = 0.3

MAX_TITLE_LENGTH = 50
SENTENCE_SPLIT = re.compile(r"[.!?]")


class ThreadLinker:
    """
    Links messages from any source into threads.

    Source adapters are keyed by MessageSource; a failing adapter yields
    None so batch callers can skip that message.
    """

    def __init__(self, thread_manager: ThreadManager):
        self.thread_manager = thread_manager
        self.source_handlers: Dict[MessageSource, SourceAdapter] = dict(DEFAULT_ADAPTERS)

    # ─────────────────────────────────────────────────────────────────────────
    # Linking
    # ─────────────────────────────────────────────────────────────────────────

    def link_message(
        self,
        message: ThreadMessage,
        room_id: str,
        existing_threads: Optional[Iterable[Thread]] = None
    ) -> LinkResult:
        """
        Add a message to the best matching thread, or create a new one.

        Args:
            message: Message to place
            room_id: Room the message belongs to
            existing_threads: Candidate threads, scored in iteration order

        Returns:
            LinkResult with the thread id, whether it is new, and the branch
            id when the message opened a sub-branch
        """
        match = self.find_best_matching_thread(message, existing_threads or [])

        if match:
            branch_id = None
            if self.thread_manager.should_create_branch(message):
                parent = self.find_parent_message(message, match)
                if parent:
                    branch = self.thread_manager.create_branch(
                        match.id,
                        parent.id,
                        f"Discussion: {self.extract_main_topic(message.content)}",
                        message.content[:100],
                    )
                    branch_id = branch.id if branch else None

            self.thread_manager.add_message_to_thread(match.id, message, branch_id)
            logger.debug(f"Linked message {message.id} to thread {match.id} (branch={branch_id})")
            return LinkResult(thread_id=match.id, is_new=False, branch_id=branch_id)

        thread_id = f"thread-{room_id}-{unique_suffix()}"
        thread = self.thread_manager.create_thread(
            thread_id, room_id, self.extract_thread_title(message.content)
        )
        self.thread_manager.add_message_to_thread(thread_id, message)

        for topic in self.thread_manager.extract_topics(message.content):
            if topic not in thread.topics:
                thread.topics.append(topic)

        logger.debug(f"Created thread {thread_id} for message {message.id}")
        return LinkResult(thread_id=thread_id, is_new=True)

    def link_messages(self, messages: Iterable[ThreadMessage], room_id: str) -> Dict[str, str]:
        """
        Link a batch of messages in order.

        Threads created while linking become candidates for the rest of the
        batch. Returns message_id -> thread_id.
        """
        message_to_thread: Dict[str, str] = {}
        candidates = self.thread_manager.get_threads_in_room(room_id)

        for message in messages:
            result = self.link_message(message, room_id, candidates)
            message_to_thread[message.id] = result.thread_id

            if result.is_new:
                candidates.append(self.thread_manager.get_thread(result.thread_id))

        return message_to_thread

    # ─────────────────────────────────────────────────────────────────────────
    # Scoring
    # ─────────────────────────────────────────────────────────────────────────

    def score_thread(self, message: ThreadMessage, thread: Thread) -> float:
        """Heuristic affinity of a message to a thread (0-1)."""
        score = 0.0

        if message.sender.id in thread.participants:
            score += PARTICIPANT_WEIGHT

        message_topics = self.thread_manager.extract_topics(message.content)
        overlap = len([t for t in message_topics if t in thread.topics])
        score += (overlap / max(len(message_topics), 1)) * TOPIC_WEIGHT

        last = thread.last_message()
        if last and abs(message.timestamp - last.timestamp) < RECENCY_WINDOW_MS:
            score += RECENCY_WEIGHT

        return score

    def find_best_matching_thread(
        self,
        message: ThreadMessage,
        threads: Iterable[Thread]
    ) -> Optional[Thread]:
        """Highest scoring non-archived thread above the threshold (first wins ties)."""
        best_match = None
        best_score = 0.0

        for thread in threads:
            if thread.is_archived:
                continue

            score = self.score_thread(message, thread)
            if score > best_score:
                best_score = score
                best_match = thread

        return best_match if best_score > MATCH_THRESHOLD else None

    def find_parent_message(self, message: ThreadMessage, thread: Thread) -> Optional[ThreadMessage]:
        """Most recent message in any branch that precedes `message`."""
        parent = None
        for branch in thread.all_branches():
            for message_id in reversed(branch.message_ids):
                candidate = thread.messages.get(message_id)
                if candidate and candidate.timestamp < message.timestamp:
                    if parent is None or candidate.timestamp > parent.timestamp:
                        parent = candidate
        return parent

    def extract_thread_title(self, content: str) -> str:
        """First sentence, shortened to 50 chars with an ellipsis."""
        first_sentence = SENTENCE_SPLIT.split(content)[0].strip()

        if len(first_sentence) > MAX_TITLE_LENGTH:
            return first_sentence[:MAX_TITLE_LENGTH - 3] + "..."

        return first_sentence or "Untitled Thread"

    def extract_main_topic(self, content: str) -> str:
        topics = self.thread_manager.extract_topics(content)
        return topics[0] if topics else "Discussion"

    # ─────────────────────────────────────────────────────────────────────────
    # Source Adapters
    # ─────────────────────────────────────────────────────────────────────────

    def register_source_handler(self, source: Union[MessageSource, str], handler: SourceAdapter):
        self.source_handlers[MessageSource(source)] = handler

    def convert_to_thread_message(
        self,
        source: Union[MessageSource, str],
        event: Any
    ) -> Optional[ThreadMessage]:
        """Run the adapter for `source`; None when unknown or when it fails."""
        try:
            source = MessageSource(source)
        except ValueError:
            logger.warning(f"Unknown message source: {source}")
            return None

        handler = self.source_handlers.get(source)
        if not handler:
            logger.warning(f"No adapter registered for source {source.value}")
            return None

        try:
            return handler(event)
        except Exception as e:
            logger.error(f"Failed to convert {source.value} event: {e}")
            return None

    def convert_many(
        self,
        source: Union[MessageSource, str],
        events: Iterable[Any]
    ) -> List[ThreadMessage]:
        """Convert a batch, dropping events whose adapter failed."""
        messages = []
        for event in events:
            message = self.convert_to_thread_message(source, event)
            if message is not None:
                messages.append(message)
        return messages
