"""
ThreadSummarizer - on-demand summaries and analysis of threads.

Local extraction is the default; an AI provider is only called when the
caller asks for it. Summaries are cached per thread and expire passively
(checked when read).
"""

import logging
import re
from typing import Dict, Any, Optional, List, Callable, Awaitable, Iterable, Tuple

from utils import now_ms
from .models import Thread

logger = logging.getLogger(__name__)

AIProvider = Callable[[str], Awaitable[str]]

DEFAULT_CACHE_TTL_MS = 60 * 60 * 1000
DAY_MS = 24 * 60 * 60 * 1000
MAX_ITEMS = 5

SENTENCE_SPLIT = re.compile(r"[.!?]")
KEY_INDICATOR = re.compile(r"^(important|note|key|critical|must|should)", re.IGNORECASE)
ALL_CAPS_TOKEN = re.compile(r"[A-Z]{2,}")

ACTION_PATTERNS = [
    re.compile(r"(?:TODO|FIXME|XXX|HACK):\s*(.+?)(?:\n|$)", re.IGNORECASE),
    re.compile(r"\b(?:need to|must|should|will|going to)\s+(.+?)(?:\n|[.!?]|$)", re.IGNORECASE),
    re.compile(r"\[x\]\s+(.+?)(?:\n|$)", re.IGNORECASE),   # checked items
    re.compile(r"\[ \]\s+(.+?)(?:\n|$)"),                 # unchecked items
]


def _dedupe(items: Iterable[str], limit: int = MAX_ITEMS) -> List[str]:
    return list(dict.fromkeys(items))[:limit]


class ThreadSummarizer:
    """
    Summaries, key points, action items and thread similarity.

    Called only when needed to keep AI usage (and cost) under control.
    """

    def __init__(self, cache_ttl_ms: int = DEFAULT_CACHE_TTL_MS):
        self.cache_ttl_ms = cache_ttl_ms

        # thread_id -> (summary, generated_at)
        self._summary_cache: Dict[str, Tuple[str, int]] = {}

    async def summarize_thread(
        self,
        thread: Thread,
        use_ai: bool = False,
        ai_provider: Optional[AIProvider] = None
    ) -> str:
        """
        Summarize a thread, reusing a cached summary younger than the TTL.

        Args:
            thread: Thread to summarize
            use_ai: Ask the AI provider instead of local extraction
            ai_provider: Async callable taking the transcript, returning text

        Returns:
            Summary text (also stored on the thread)
        """
        now = now_ms()
        cached = self._summary_cache.get(thread.id)
        if cached and now - cached[1] < self.cache_ttl_ms:
            return cached[0]

        summary = None
        if use_ai and ai_provider:
            try:
                summary = await ai_provider(self.prepare_content_for_ai(thread))
            except Exception as e:
                logger.error(f"AI summary failed for thread {thread.id}, using local summary: {e}")

        if summary is None:
            summary = self.extract_local_summary(thread)

        self._summary_cache[thread.id] = (summary, now)
        thread.summary = summary
        thread.summary_generated_at = now
        return summary

    def extract_key_points(self, thread: Thread) -> List[str]:
        """Sentences flagged as important (keyword lead-in or an all-caps token)."""
        key_points = []
        for message in thread.sorted_messages():
            for sentence in SENTENCE_SPLIT.split(message.content):
                trimmed = sentence.strip()
                if len(trimmed) > 10 and (KEY_INDICATOR.match(trimmed) or ALL_CAPS_TOKEN.search(trimmed)):
                    key_points.append(trimmed)

        thread.key_points = _dedupe(key_points)
        return thread.key_points

    def extract_action_items(self, thread: Thread) -> List[str]:
        """TODO-style markers, modal-verb commitments and checkbox lines."""
        action_items = []
        for message in thread.sorted_messages():
            for pattern in ACTION_PATTERNS:
                for match in pattern.finditer(message.content):
                    item = match.group(1).strip()
                    if len(item) > 5:
                        action_items.append(item)

        thread.action_items = _dedupe(action_items)
        return thread.action_items

    def get_thread_analysis(self, thread: Thread) -> Dict[str, Any]:
        duration = thread.updated_at - thread.created_at
        hours = duration / 3600000
        return {
            "message_count": len(thread.messages),
            "participant_count": len(thread.participants),
            "branch_count": len(thread.branches),
            "topic_count": len(thread.topics),
            "topics": list(thread.topics),
            "participants": sorted(thread.participants),
            "created_at": thread.created_at,
            "updated_at": thread.updated_at,
            "duration": duration,
            "messages_per_hour": round(len(thread.messages) / hours, 2) if hours > 0 else 0.0,
        }

    def find_related_threads(
        self,
        thread: Thread,
        all_threads: Iterable[Thread],
        threshold: float = 0.5
    ) -> List[Tuple[Thread, float]]:
        """Other threads scoring at least `threshold`, best first."""
        related = []
        for other in all_threads:
            if other.id == thread.id:
                continue

            similarity = self.calculate_thread_similarity(thread, other)
            if similarity >= threshold:
                related.append((other, similarity))

        return sorted(related, key=lambda pair: pair[1], reverse=True)

    @staticmethod
    def calculate_thread_similarity(thread1: Thread, thread2: Thread) -> float:
        """0.4 topic Jaccard + 0.3 participant Jaccard + 0.3 if updated within a day."""
        score = 0.0

        topics1, topics2 = set(thread1.topics), set(thread2.topics)
        score += len(topics1 & topics2) / max(len(topics1 | topics2), 1) * 0.4

        people1, people2 = thread1.participants, thread2.participants
        score += len(people1 & people2) / max(len(people1 | people2), 1) * 0.3

        if abs(thread1.updated_at - thread2.updated_at) < DAY_MS:
            score += 0.3

        return score

    def prepare_content_for_ai(self, thread: Thread) -> str:
        """Title/description header plus a chronological `sender: content` transcript."""
        transcript = "\n\n".join(
            f"{m.sender.name}: {m.content}" for m in thread.sorted_messages()
        )
        return (
            f"Thread: {thread.title}\n"
            f"Description: {thread.description or 'N/A'}\n\n"
            f"Messages:\n{transcript}"
        )

    def extract_local_summary(self, thread: Thread) -> str:
        key_points = self.extract_key_points(thread)
        action_items = self.extract_action_items(thread)

        lines = [
            f"Thread: {thread.title}",
            f"Participants: {len(thread.participants)}",
            f"Messages: {len(thread.messages)}",
        ]
        if thread.topics:
            lines.append(f"Topics: {', '.join(thread.topics)}")

        if key_points:
            lines.append("")
            lines.append("Key Points:")
            lines.extend(f"- {p}" for p in key_points)

        if action_items:
            lines.append("")
            lines.append("Action Items:")
            lines.extend(f"- {a}" for a in action_items)

        return "\n".join(lines) + "\n"

    def clear_cache(self, thread_id: str):
        self._summary_cache.pop(thread_id, None)

    def clear_all_cache(self):
        self._summary_cache.clear()
