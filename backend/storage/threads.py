"""
Durable thread storage.

Persists whole thread aggregates through SQLAlchemy. Blocking database work
runs in the default executor so callers on the event loop are never blocked.
"""

import asyncio
import logging
from typing import Optional, List, Dict, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from config import DATABASE_URL
from database.crud import ThreadCRUD, MetaCRUD
from database.database import create_db_engine, create_tables, get_session_factory
from threads.models import Thread

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StorageError(Exception):
    """A storage operation failed; in-memory state is unaffected."""
    pass


class ThreadStorage:
    """
    Aggregate store keyed by thread id, with a secondary index by room.

    `save_thread` is a full upsert; there are no partial updates. Every
    method initializes the schema on first use.
    """

    def __init__(self, database_url: str = DATABASE_URL):
        """
        Initialize thread storage.

        Args:
            database_url: SQLAlchemy URL (e.g. sqlite:///./threads.db)
        """
        self.database_url = database_url
        self._engine = None
        self._session_factory = None
        self._init_lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._session_factory is not None

    async def _run(self, operation: str, fn: Callable[..., T]) -> T:
        """Run `fn(session)` in a worker thread, wrapping database errors."""
        if not self.is_initialized:
            await self.init()

        def work():
            with self._session_factory() as session:
                return fn(session)

        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, work)
        except SQLAlchemyError as e:
            logger.error(f"Failed to {operation}: {e}")
            raise StorageError(f"Failed to {operation}") from e

    async def init(self) -> None:
        """Create the schema on first use. Safe to call repeatedly."""
        async with self._init_lock:
            if self.is_initialized:
                return

            def setup():
                engine = create_db_engine(self.database_url)
                create_tables(engine)
                session_factory = get_session_factory(engine)
                with session_factory() as session:
                    version = MetaCRUD.ensure_schema_version(session)
                return engine, session_factory, version

            try:
                loop = asyncio.get_running_loop()
                engine, session_factory, version = await loop.run_in_executor(None, setup)
            except SQLAlchemyError as e:
                logger.error(f"Failed to initialize thread storage: {e}")
                raise StorageError("Failed to initialize thread storage") from e

            self._engine = engine
            self._session_factory = session_factory
            logger.info(f"ThreadStorage initialized (schema v{version})")

    async def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_factory = None

    async def save_thread(self, thread: Thread) -> None:
        """Insert or replace the whole thread aggregate."""
        # Snapshot on the loop; the worker thread never touches live state
        data = thread.to_dict()
        await self._run(f"save thread {thread.id}", lambda s: ThreadCRUD.upsert_thread(s, data))
        logger.debug(f"Thread saved: {thread.id}")

    async def load_thread(self, thread_id: str) -> Optional[Thread]:
        def load(session):
            record = ThreadCRUD.get_thread(session, thread_id)
            return record.data if record else None

        data = await self._run(f"load thread {thread_id}", load)
        return Thread.from_dict(data) if data else None

    async def load_threads_for_room(self, room_id: str) -> List[Thread]:
        rows = await self._run(
            f"load threads for room {room_id}",
            lambda s: [r.data for r in ThreadCRUD.get_threads_by_room(s, room_id)]
        )
        logger.debug(f"Loaded {len(rows)} threads for room {room_id}")
        return [Thread.from_dict(data) for data in rows]

    async def load_all_threads(self) -> List[Thread]:
        rows = await self._run(
            "load all threads",
            lambda s: [r.data for r in ThreadCRUD.get_all_threads(s)]
        )
        logger.debug(f"Loaded {len(rows)} total threads")
        return [Thread.from_dict(data) for data in rows]

    async def delete_thread(self, thread_id: str) -> bool:
        deleted = await self._run(f"delete thread {thread_id}", lambda s: ThreadCRUD.delete_thread(s, thread_id))
        if deleted:
            logger.debug(f"Thread deleted: {thread_id}")
        return deleted

    async def clear_all(self) -> int:
        count = await self._run("clear threads", ThreadCRUD.delete_all)
        logger.info(f"All threads cleared ({count})")
        return count

    async def get_stats(self) -> Dict[str, int]:
        thread_count, total_messages = await self._run("compute storage stats", ThreadCRUD.get_totals)
        return {
            "thread_count": thread_count,
            "total_messages": total_messages,
        }
