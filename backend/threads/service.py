"""
ThreadService - the single owner of thread state.

Wires the manager, linker, summarizer, storage and protocol sync together.
All mutation happens on the event loop that calls the service; persistence
runs as background tasks that never block or fail the caller.
"""

import asyncio
import logging
from typing import Dict, Any, Optional, List, Iterable, Set, Tuple, Union

from config import DATABASE_URL, SUMMARY_CACHE_TTL_MS
from storage.threads import ThreadStorage, StorageError
from utils import now_ms, unique_suffix
from .adapters import display_name_from_user_id
from .linker import ThreadLinker
from .manager import ThreadManager
from .models import (
    Thread,
    ThreadMessage,
    ThreadBranch,
    ContextualObject,
    LinkResult,
    LinkingConfig,
    MessageSource,
    Sender,
)
from .summarizer import ThreadSummarizer, AIProvider
from .sync import ThreadSync, ThreadMetadata

logger = logging.getLogger(__name__)

SYNC_STATE_KEY = "sync_state"
SYNC_PENDING = "pending"
SYNC_SYNCED = "synced"


class ThreadService:
    """
    Orchestrates thread operations for one process.

    Mutations update the in-memory aggregate first and then schedule a save.
    A failed save is logged; in-memory state stays authoritative.
    """

    def __init__(
        self,
        manager: Optional[ThreadManager] = None,
        storage: Optional[ThreadStorage] = None,
        sync: Optional[ThreadSync] = None,
        summarizer: Optional[ThreadSummarizer] = None,
        ai_provider: Optional[AIProvider] = None
    ):
        self.manager = manager or ThreadManager(LinkingConfig.from_env())
        self.linker = ThreadLinker(self.manager)
        self.summarizer = summarizer or ThreadSummarizer(cache_ttl_ms=SUMMARY_CACHE_TTL_MS)
        self.storage = storage
        self.sync = sync or ThreadSync()
        self.ai_provider = ai_provider

        self._initialized = False
        self._pending_writes: Set[asyncio.Task] = set()
        self._write_lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> int:
        """Load persisted threads once. Returns the number loaded."""
        if self._initialized:
            return 0

        loaded = 0
        if self.storage:
            try:
                await self.storage.init()
                loaded = self.manager.load_threads(await self.storage.load_all_threads())
            except StorageError as e:
                logger.error(f"Could not load persisted threads, starting empty: {e}")

        self._initialized = True
        logger.info(f"ThreadService initialized with {loaded} threads")
        return loaded

    async def close(self) -> None:
        await self.flush()
        if self.storage:
            await self.storage.close()
        if self.sync.client:
            await self.sync.client.close()

    # ─────────────────────────────────────────────────────────────────────────
    # Background persistence
    # ─────────────────────────────────────────────────────────────────────────

    def _schedule(self, coro, description: str) -> None:
        task = asyncio.create_task(self._guarded_write(coro, description))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _guarded_write(self, coro, description: str) -> None:
        # Writes run one at a time in scheduling order
        async with self._write_lock:
            try:
                await coro
            except StorageError as e:
                logger.error(f"Background write failed ({description}): {e}")
            except Exception:
                logger.exception(f"Unexpected error in background write ({description})")

    def _persist(self, thread_ids: Union[str, Iterable[str]]) -> None:
        if not self.storage:
            return

        if isinstance(thread_ids, str):
            thread_ids = [thread_ids]

        for thread_id in dict.fromkeys(thread_ids):
            thread = self.manager.get_thread(thread_id)
            if thread:
                self._schedule(self.storage.save_thread(thread), f"save {thread_id}")

    async def flush(self) -> None:
        """Wait for every scheduled write to finish."""
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes))

    # ─────────────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────────────

    async def create_thread(
        self,
        room_id: str,
        title: str,
        description: Optional[str] = None,
        thread_id: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> Thread:
        thread_id = thread_id or f"thread-{room_id}-{unique_suffix()}"
        thread = self.manager.create_thread(thread_id, room_id, title, description)
        thread.created_by = created_by
        self._persist(thread_id)
        logger.info(f"Thread created: {thread_id} in {room_id}")
        return thread

    async def add_message(
        self,
        thread_id: str,
        message: ThreadMessage,
        branch_id: Optional[str] = None
    ) -> bool:
        added = self.manager.add_message_to_thread(thread_id, message, branch_id)
        if added:
            self._persist(thread_id)
        return added

    async def link_message(self, message: ThreadMessage, room_id: str) -> LinkResult:
        """Route one message, scoring the room's threads as candidates."""
        candidates = self.manager.get_threads_in_room(room_id)
        result = self.linker.link_message(message, room_id, candidates)
        self._persist(result.thread_id)
        return result

    async def link_messages(self, messages: Iterable[ThreadMessage], room_id: str) -> Dict[str, str]:
        mapping = self.linker.link_messages(messages, room_id)
        self._persist(mapping.values())
        return mapping

    async def ingest_events(
        self,
        source: Union[MessageSource, str],
        events: Iterable[Any],
        room_id: str
    ) -> Dict[str, str]:
        """Convert raw source events and link them. Unconvertible events are skipped."""
        events = list(events)
        messages = self.linker.convert_many(source, events)
        if len(messages) < len(events):
            logger.warning(f"Skipped {len(events) - len(messages)} unconvertible {source} events")
        return await self.link_messages(messages, room_id)

    async def create_branch(
        self,
        thread_id: str,
        parent_message_id: Optional[str],
        topic: str,
        description: Optional[str] = None
    ) -> Optional[ThreadBranch]:
        branch = self.manager.create_branch(thread_id, parent_message_id, topic, description)
        if branch:
            self._persist(thread_id)
        return branch

    async def merge_branches(
        self,
        thread_id: str,
        source_branch_id: str,
        target_branch_id: Optional[str] = None
    ) -> bool:
        merged = self.manager.merge_branches(thread_id, source_branch_id, target_branch_id)
        if merged:
            self._persist(thread_id)
        return merged

    async def attach_contextual_object(
        self,
        thread_id: str,
        message_id: str,
        obj: ContextualObject
    ) -> bool:
        attached = self.manager.attach_contextual_object(thread_id, message_id, obj)
        if attached:
            self._persist(thread_id)
        return attached

    async def link_threads(self, thread_id1: str, thread_id2: str) -> bool:
        linked = self.manager.link_threads(thread_id1, thread_id2)
        if linked:
            self._persist([thread_id1, thread_id2])
        return linked

    async def archive_thread(self, thread_id: str) -> bool:
        archived = self.manager.archive_thread(thread_id)
        if archived:
            self._persist(thread_id)
            logger.info(f"Thread archived: {thread_id}")
        return archived

    async def delete_thread(self, thread_id: str) -> bool:
        thread = self.manager.get_thread(thread_id)
        if not thread:
            return False

        related = list(thread.related_thread_ids)
        self.manager.delete_thread(thread_id)
        self.summarizer.clear_cache(thread_id)

        if self.storage:
            self._schedule(self.storage.delete_thread(thread_id), f"delete {thread_id}")
            self._persist(related)

        logger.info(f"Thread deleted: {thread_id}")
        return True

    # ─────────────────────────────────────────────────────────────────────────
    # Queries and analysis
    # ─────────────────────────────────────────────────────────────────────────

    def get_thread(self, thread_id: str) -> Optional[Thread]:
        return self.manager.get_thread(thread_id)

    def get_threads(self, room_id: Optional[str] = None, include_archived: bool = False) -> List[Thread]:
        if room_id is None:
            threads = self.manager.get_all_threads()
            return threads if include_archived else [t for t in threads if not t.is_archived]
        return self.manager.get_threads_in_room(room_id, include_archived=include_archived)

    async def summarize_thread(self, thread_id: str, use_ai: bool = False) -> Optional[str]:
        thread = self.manager.get_thread(thread_id)
        if not thread:
            return None

        summary = await self.summarizer.summarize_thread(thread, use_ai=use_ai, ai_provider=self.ai_provider)
        self._persist(thread_id)
        return summary

    async def get_key_points(self, thread_id: str) -> Optional[List[str]]:
        thread = self.manager.get_thread(thread_id)
        if not thread:
            return None

        key_points = self.summarizer.extract_key_points(thread)
        self._persist(thread_id)
        return key_points

    async def get_action_items(self, thread_id: str) -> Optional[List[str]]:
        thread = self.manager.get_thread(thread_id)
        if not thread:
            return None

        action_items = self.summarizer.extract_action_items(thread)
        self._persist(thread_id)
        return action_items

    def get_thread_analysis(self, thread_id: str) -> Optional[Dict[str, Any]]:
        thread = self.manager.get_thread(thread_id)
        if not thread:
            return None
        return self.summarizer.get_thread_analysis(thread)

    def get_related_threads(self, thread_id: str, threshold: float = 0.5) -> List[Tuple[Thread, float]]:
        """Explicitly linked threads first, then similar active threads (best first)."""
        thread = self.manager.get_thread(thread_id)
        if not thread:
            return []

        related: Dict[str, Tuple[Thread, float]] = {}
        for other in self.manager.get_related_threads(thread_id):
            related[other.id] = (other, self.summarizer.calculate_thread_similarity(thread, other))

        candidates = self.manager.get_active_threads()
        for other, score in self.summarizer.find_related_threads(thread, candidates, threshold):
            related.setdefault(other.id, (other, score))

        return list(related.values())

    async def get_stats(self) -> Dict[str, Any]:
        threads = self.manager.get_all_threads()
        stats: Dict[str, Any] = {
            "thread_count": len(threads),
            "active_thread_count": len([t for t in threads if not t.is_archived]),
            "message_count": sum(len(t.messages) for t in threads),
            "pending_writes": len(self._pending_writes),
        }

        if self.storage:
            try:
                stats["storage"] = await self.storage.get_stats()
            except StorageError as e:
                logger.error(f"Could not read storage stats: {e}")
                stats["storage"] = None

        return stats

    # ─────────────────────────────────────────────────────────────────────────
    # Protocol sync
    # ─────────────────────────────────────────────────────────────────────────

    def _mark_sync(self, thread: Thread, state: str) -> None:
        thread.metadata[SYNC_STATE_KEY] = state
        self._persist(thread.id)

    async def sync_thread(self, thread_id: str, created_by: Optional[str] = None) -> Optional[str]:
        """
        Mirror a thread into the protocol.

        Creates the native root event if the thread has none yet, then
        writes the metadata blob. On failure the thread is marked pending
        and a later call retries.

        Returns:
            The root event id, or None if the thread is unknown or the root
            could not be created
        """
        thread = self.manager.get_thread(thread_id)
        if not thread:
            return None

        if not thread.root_event_id:
            root_event_id = await self.sync.create_thread_root(thread.room_id, thread.title)
            if not root_event_id:
                self._mark_sync(thread, SYNC_PENDING)
                return None

            thread.root_event_id = root_event_id
            thread.is_native = True

        metadata = ThreadMetadata.from_thread(thread, created_by)
        stored = await self.sync.store_thread_metadata(thread.room_id, thread.root_event_id, metadata)
        self._mark_sync(thread, SYNC_SYNCED if stored else SYNC_PENDING)
        return thread.root_event_id

    async def send_to_thread(
        self,
        thread_id: str,
        content: str,
        sender: Optional[Sender] = None
    ) -> Optional[ThreadMessage]:
        """Post a reply to the native thread and mirror it locally."""
        thread = self.manager.get_thread(thread_id)
        if not thread:
            return None

        if not thread.root_event_id and not await self.sync_thread(thread_id):
            return None

        event_id = await self.sync.send_message_to_thread(thread.room_id, content, thread.root_event_id)
        if not event_id:
            self._mark_sync(thread, SYNC_PENDING)
            return None

        if sender is None:
            user_id = self.sync.client.user_id or "unknown"
            sender = Sender(id=user_id, name=display_name_from_user_id(user_id))

        message = ThreadMessage(
            id=event_id,
            event_id=event_id,
            source=MessageSource.MATRIX,
            sender=sender,
            content=content,
            timestamp=now_ms(),
        )
        self.manager.add_message_to_thread(thread_id, message)
        self._persist(thread_id)
        return message

    async def import_native_threads(self, room_id: str) -> List[str]:
        """
        Adopt protocol-native threads from the room timeline.

        The latest timeline page is fetched first; threads outside it stay
        invisible. Threads whose root is already known locally are left alone. Returns
        the ids of the threads created.
        """
        await self.sync.load_timeline(room_id)
        known_roots = {t.root_event_id for t in self.manager.get_threads_in_room(room_id) if t.root_event_id}
        created = []

        for root_event_id in self.sync.load_threads_from_room(room_id):
            if root_event_id in known_roots:
                continue

            events = self.sync.get_thread_messages(room_id, root_event_id)
            if not events:
                continue

            metadata = await self.sync.load_thread_metadata(room_id, root_event_id)
            root = next((e for e in events if e.event_id == root_event_id), events[0])
            title = metadata.title if metadata and metadata.title else self.linker.extract_thread_title(root.body)

            thread = self.manager.create_thread(
                f"thread-{room_id}-{unique_suffix()}",
                room_id,
                title,
                metadata.description if metadata else None,
            )
            thread.root_event_id = root_event_id
            thread.is_native = True
            thread.metadata[SYNC_STATE_KEY] = SYNC_SYNCED
            if metadata:
                thread.tags = list(metadata.tags)
                thread.created_by = metadata.created_by

            for event in events:
                message = self.sync.event_to_thread_message(event)
                if message is None:
                    continue
                self.manager.add_message_to_thread(thread.id, message)
                for topic in self.manager.extract_topics(event.body):
                    if topic not in thread.topics:
                        thread.topics.append(topic)

            created.append(thread.id)

        self._persist(created)
        if created:
            logger.info(f"Imported {len(created)} native threads from {room_id}")
        return created


# Global service instance (initialized at startup)
thread_service: Optional[ThreadService] = None


async def initialize_thread_service(database_url: str = DATABASE_URL) -> ThreadService:
    """Build the process-wide service from config and load persisted threads."""
    global thread_service

    from ai.adapters import create_summary_provider
    from protocol import create_protocol_client

    service = ThreadService(
        storage=ThreadStorage(database_url),
        sync=ThreadSync(create_protocol_client()),
        ai_provider=create_summary_provider(),
    )
    await service.initialize()
    thread_service = service
    return service
