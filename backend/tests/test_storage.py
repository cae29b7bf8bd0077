import pytest
from database.crud import ThreadCRUD, MetaCRUD
from database.database import create_db_engine, create_tables, get_session_factory
from database.models import SCHEMA_VERSION
from storage.threads import ThreadStorage, StorageError
from threads.manager import ThreadManager
from threads.models import ContextualObject, ContextObjectType


@pytest.fixture
def populated_manager(make_message):
    """Two threads in one room, with branches, links and an attachment"""
    manager = ThreadManager()
    manager.create_thread("t1", "!room", "Launch", "Launch prep")
    manager.create_thread("t2", "!room", "Budget")
    manager.add_message_to_thread("t1", make_message("m1", "kickoff", timestamp=1000))
    branch = manager.create_branch("t1", "m1", "Pricing")
    manager.add_message_to_thread("t1", make_message("m2", "price?", sender="@bob:example.org", timestamp=2000), branch.id)
    manager.attach_contextual_object(
        "t1", "m1", ContextualObject(id="o1", type=ContextObjectType.DOCUMENT, title="Plan", created_at=5)
    )
    manager.add_message_to_thread("t2", make_message("m3", "numbers", timestamp=3000))
    manager.link_threads("t1", "t2")
    manager.get_thread("t1").messages["m1"].reactions["👍"] = 2
    return manager


class TestThreadCRUD:
    """Test suite for row-level thread CRUD"""

    @pytest.fixture
    def db_session(self):
        """In-memory SQLite database for testing"""
        engine = create_db_engine("sqlite:///:memory:")
        create_tables(engine)
        SessionLocal = get_session_factory(engine)
        session = SessionLocal()

        yield session

        session.close()
        engine.dispose()

    def test_upsert_inserts_then_replaces(self, db_session, populated_manager):
        data = populated_manager.get_thread("t1").to_dict()

        record = ThreadCRUD.upsert_thread(db_session, data)
        assert record.message_count == 2
        assert record.room_id == "!room"

        data["title"] = "Renamed"
        data["messages"] = data["messages"][:1]
        record = ThreadCRUD.upsert_thread(db_session, data)

        assert record.message_count == 1
        assert ThreadCRUD.get_thread(db_session, "t1").data["title"] == "Renamed"
        assert len(ThreadCRUD.get_all_threads(db_session)) == 1

    def test_snapshot_is_detached_from_live_thread(self, db_session, populated_manager):
        thread = populated_manager.get_thread("t1")
        thread.messages["m1"].contextual_objects[0].metadata["pages"] = 3
        data = thread.to_dict()

        thread.metadata["sync_state"] = "pending"
        thread.messages["m1"].reactions["👍"] = 5
        thread.messages["m1"].metadata["edited"] = True
        thread.messages["m1"].contextual_objects[0].metadata["pages"] = 4

        message = dict(data["messages"])["m1"]
        assert data["metadata"] == {}
        assert message["reactions"] == {"👍": 2}
        assert message["metadata"] == {}
        assert message["contextual_objects"][0]["metadata"] == {"pages": 3}

        ThreadCRUD.upsert_thread(db_session, data)
        stored = ThreadCRUD.get_thread(db_session, "t1").data
        assert stored["metadata"] == {}

    def test_get_totals(self, db_session, populated_manager):
        assert ThreadCRUD.get_totals(db_session) == (0, 0)

        for thread in populated_manager.get_all_threads():
            ThreadCRUD.upsert_thread(db_session, thread.to_dict())

        assert ThreadCRUD.get_totals(db_session) == (2, 3)

    def test_schema_version(self, db_session):
        assert MetaCRUD.ensure_schema_version(db_session) == SCHEMA_VERSION
        MetaCRUD.set_value(db_session, "schema_version", "7")
        assert MetaCRUD.ensure_schema_version(db_session) == 7


class TestThreadStorage:
    """Test suite for the async aggregate store"""

    @pytest.fixture
    def storage(self, tmp_path):
        return ThreadStorage(f"sqlite:///{tmp_path / 'threads.db'}")

    @pytest.mark.asyncio
    async def test_round_trip(self, storage, populated_manager):
        """Saved thread loads back with equal sets and maps"""
        original = populated_manager.get_thread("t1")

        await storage.save_thread(original)
        loaded = await storage.load_thread("t1")

        assert loaded == original
        assert loaded.participants == {"@alice:example.org", "@bob:example.org"}
        assert loaded.related_thread_ids == {"t2"}
        assert set(loaded.branches) == set(original.branches)
        assert loaded.messages["m1"].contextual_objects[0].type == ContextObjectType.DOCUMENT
        assert loaded.messages["m1"].reactions == {"👍": 2}
        await storage.close()

    @pytest.mark.asyncio
    async def test_load_missing_thread(self, storage):
        assert await storage.load_thread("nope") is None

    @pytest.mark.asyncio
    async def test_room_index_and_delete(self, storage, populated_manager):
        for thread in populated_manager.get_all_threads():
            await storage.save_thread(thread)
        other = ThreadManager()
        other.create_thread("t3", "!elsewhere", "Other room")
        await storage.save_thread(other.get_thread("t3"))

        room_threads = await storage.load_threads_for_room("!room")
        assert sorted(t.id for t in room_threads) == ["t1", "t2"]

        assert await storage.delete_thread("t1") is True
        assert await storage.delete_thread("t1") is False
        assert sorted(t.id for t in await storage.load_all_threads()) == ["t2", "t3"]

    @pytest.mark.asyncio
    async def test_archived_state_persists(self, storage, populated_manager):
        populated_manager.archive_thread("t2")
        await storage.save_thread(populated_manager.get_thread("t2"))

        loaded = await storage.load_thread("t2")

        assert loaded.is_archived
        assert loaded.archived_at == populated_manager.get_thread("t2").archived_at

    @pytest.mark.asyncio
    async def test_stats_and_clear(self, storage, populated_manager):
        for thread in populated_manager.get_all_threads():
            await storage.save_thread(thread)

        assert await storage.get_stats() == {"thread_count": 2, "total_messages": 3}
        assert await storage.clear_all() == 2
        assert await storage.get_stats() == {"thread_count": 0, "total_messages": 0}

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path, populated_manager):
        url = f"sqlite:///{tmp_path / 'threads.db'}"
        first = ThreadStorage(url)
        await first.save_thread(populated_manager.get_thread("t2"))
        await first.close()

        second = ThreadStorage(url)
        assert (await second.load_thread("t2")).title == "Budget"
        await second.close()

    @pytest.mark.asyncio
    async def test_init_failure_raises_storage_error(self, tmp_path):
        """Unopenable database surfaces as StorageError"""
        storage = ThreadStorage(f"sqlite:///{tmp_path / 'missing-dir' / 'threads.db'}")

        with pytest.raises(StorageError):
            await storage.init()
