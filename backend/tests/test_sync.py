import json

import httpx
import pytest
from protocol import InMemoryProtocolClient, MatrixClient, ProtocolClient, TimelineEvent, ProtocolError
from threads.manager import ThreadManager
from threads.service import ThreadService
from threads.sync import ThreadSync, ThreadMetadata, METADATA_EVENT_TYPE


ROOM = "!room:example.org"


class FailingClient(ProtocolClient):
    """Client whose every call fails"""

    user_id = "@broken:example.org"

    async def send_event(self, room_id, event_type, content):
        raise ProtocolError("send failed", status_code=500)

    async def send_state_event(self, room_id, event_type, state_key, content):
        raise ProtocolError("state failed", status_code=500)

    async def get_state_event(self, room_id, event_type, state_key):
        raise ProtocolError("read failed", status_code=500)

    def get_timeline(self, room_id):
        raise RuntimeError("timeline unavailable")


class TestThreadSync:
    """Test suite for posting threads and metadata through a protocol client"""

    @pytest.fixture
    def client(self):
        return InMemoryProtocolClient(user_id="@me:example.org")

    @pytest.fixture
    def sync(self, client):
        return ThreadSync(client)

    @pytest.mark.asyncio
    async def test_create_root_and_reply(self, sync, client):
        root_id = await sync.create_thread_root(ROOM, "Launch thread")
        reply_id = await sync.send_message_to_thread(ROOM, "first reply", root_id)

        timeline = client.get_timeline(ROOM)
        assert [e.event_id for e in timeline] == [root_id, reply_id]
        assert timeline[0].body == "Launch thread"
        assert timeline[1].content["m.relates_to"] == {"rel_type": "m.thread", "event_id": root_id}
        assert timeline[1].thread_root_id == root_id

    @pytest.mark.asyncio
    async def test_group_and_order_thread_messages(self, sync, client):
        root_id = await sync.create_thread_root(ROOM, "Root")
        client.add_event(TimelineEvent(
            event_id="$late", room_id=ROOM, sender="@bob:example.org", type="m.room.message",
            origin_server_ts=9_999_999_999_999,
            content={"body": "late", "m.relates_to": {"rel_type": "m.thread", "event_id": root_id}},
        ))
        client.add_event(TimelineEvent(
            event_id="$early", room_id=ROOM, sender="@carol:example.org", type="m.room.message",
            origin_server_ts=1,
            content={"body": "early", "m.relates_to": {"rel_type": "m.thread", "event_id": root_id}},
        ))
        await sync.create_thread_root(ROOM, "Unthreaded message")

        threads = sync.load_threads_from_room(ROOM)
        assert list(threads) == [root_id]
        assert len(threads[root_id]) == 2

        messages = sync.get_thread_messages(ROOM, root_id)
        assert [e.event_id for e in messages] == ["$early", root_id, "$late"]

        stats = sync.get_thread_stats(ROOM, root_id)
        assert stats["message_count"] == 3
        assert stats["participants"] == ["@bob:example.org", "@carol:example.org", "@me:example.org"]
        assert stats["created_at"] == 1

    @pytest.mark.asyncio
    async def test_metadata_round_trip(self, sync, client):
        metadata = ThreadMetadata(title="Launch", tags=["q3"], created_by="@me:example.org", created_at=10, updated_at=10)

        assert await sync.store_thread_metadata(ROOM, "$root", metadata) is not None
        assert await sync.load_thread_metadata(ROOM, "$root") == metadata

        stored = await client.get_state_event(ROOM, METADATA_EVENT_TYPE, "$root")
        assert stored["createdBy"] == "@me:example.org"
        assert stored["updatedAt"] == 10

    @pytest.mark.asyncio
    async def test_load_missing_metadata(self, sync):
        assert await sync.load_thread_metadata(ROOM, "$nothing") is None

    @pytest.mark.asyncio
    async def test_update_metadata_merges(self, sync):
        await sync.store_thread_metadata(ROOM, "$root", ThreadMetadata(title="Old", tags=["a"], created_at=10, updated_at=10))

        updated = await sync.update_thread_metadata(ROOM, "$root", title="New")

        assert updated.title == "New"
        assert updated.tags == ["a"]
        assert updated.created_at == 10
        assert updated.updated_at > 10
        assert (await sync.load_thread_metadata(ROOM, "$root")).title == "New"

    @pytest.mark.asyncio
    async def test_update_metadata_creates_blob(self, sync):
        updated = await sync.update_thread_metadata(ROOM, "$fresh", description="d")

        assert updated.title == ""
        assert updated.description == "d"
        assert updated.created_at == updated.updated_at

    @pytest.mark.asyncio
    async def test_update_metadata_rejects_unknown_fields(self, sync):
        assert await sync.update_thread_metadata(ROOM, "$root", colour="red") is None

    def test_metadata_from_thread(self):
        manager = ThreadManager()
        thread = manager.create_thread("t1", ROOM, "Launch", "desc")
        thread.tags = ["q3"]
        manager.create_branch("t1", None, "Side")

        metadata = ThreadMetadata.from_thread(thread, "@me:example.org")

        assert metadata.title == "Launch"
        assert metadata.created_by == "@me:example.org"
        assert [b["topic"] for b in metadata.branches] == ["Main Discussion", "Side"]

    def test_event_to_thread_message(self, sync):
        event = TimelineEvent(event_id="$e", room_id=ROOM, sender="@bob:example.org",
                              type="m.room.message", origin_server_ts=5, content={"body": "hey"})

        message = sync.event_to_thread_message(event)

        assert message.id == "$e"
        assert message.sender.name == "bob"

    def test_malformed_event_is_not_converted(self, sync):
        event = TimelineEvent(event_id="$bad", room_id=ROOM, sender="@bob:example.org",
                              type="m.room.message", origin_server_ts=5, content="not an object")

        assert sync.event_to_thread_message(event) is None


class TestSyncFailures:
    """Failures are logged and reported as None/empty, never raised"""

    @pytest.fixture
    def sync(self):
        return ThreadSync(FailingClient())

    @pytest.mark.asyncio
    async def test_posting_failures(self, sync):
        assert await sync.create_thread_root(ROOM, "x") is None
        assert await sync.send_message_to_thread(ROOM, "x", "$root") is None
        assert await sync.store_thread_metadata(ROOM, "$root", ThreadMetadata(title="x")) is None
        assert await sync.load_thread_metadata(ROOM, "$root") is None

    @pytest.mark.asyncio
    async def test_failed_read_skips_update(self, sync):
        """A failed read never turns into a blind overwrite"""
        assert await sync.update_thread_metadata(ROOM, "$root", title="New") is None

    def test_timeline_failures(self, sync):
        assert sync.load_threads_from_room(ROOM) == {}
        assert sync.get_thread_root(ROOM, "$root") is None
        assert sync.get_thread_messages(ROOM, "$root") == []

    @pytest.mark.asyncio
    async def test_timeline_refresh_failure(self, sync):
        assert await sync.load_timeline(ROOM) == []

    @pytest.mark.asyncio
    async def test_missing_client(self):
        sync = ThreadSync()

        assert await sync.create_thread_root(ROOM, "x") is None
        assert sync.load_threads_from_room(ROOM) == {}
        assert sync.supports_threads(ROOM) is False

        sync.set_client(InMemoryProtocolClient())
        assert sync.supports_threads(ROOM) is True


class TestMatrixClient:
    """Test suite for the HTTP client against a mocked homeserver"""

    @pytest.fixture
    def requests(self):
        return []

    @pytest.fixture
    def client(self, requests):
        state = {}

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            path = request.url.path
            if request.headers.get("Authorization") != "Bearer secret":
                return httpx.Response(401, json={"errcode": "M_UNKNOWN_TOKEN", "error": "bad token"})
            if "/send/" in path:
                return httpx.Response(200, json={"event_id": "$sent"})
            if "/state/" in path and request.method == "PUT":
                state[path] = json.loads(request.content)
                return httpx.Response(200, json={"event_id": "$state"})
            if "/state/" in path:
                if path in state:
                    return httpx.Response(200, json=state[path])
                return httpx.Response(404, json={"errcode": "M_NOT_FOUND", "error": "no state"})
            if path.endswith("/messages"):
                return httpx.Response(200, json={"chunk": [
                    {"event_id": "$2", "sender": "@b:x", "type": "m.room.message", "origin_server_ts": 2,
                     "content": {"body": "reply", "m.relates_to": {"rel_type": "m.thread", "event_id": "$1"}}},
                    {"event_id": "$1", "sender": "@a:x", "type": "m.room.message", "origin_server_ts": 1,
                     "content": {"body": "root"}},
                ]})
            return httpx.Response(404, json={"errcode": "M_UNRECOGNIZED"})

        return MatrixClient(
            "https://hs.example.org/",
            "secret",
            user_id="@me:example.org",
            transport=httpx.MockTransport(handler),
        )

    @pytest.mark.asyncio
    async def test_send_event_with_local_echo(self, client, requests):
        event_id = await client.send_event(ROOM, "m.room.message", {"body": "hi"})

        assert event_id == "$sent"
        assert requests[0].method == "PUT"
        assert requests[0].url.host == "hs.example.org"
        assert "/_matrix/client/v3/rooms/" in requests[0].url.path
        assert json.loads(requests[0].content) == {"body": "hi"}
        assert [e.event_id for e in client.get_timeline(ROOM)] == ["$sent"]
        assert client.get_timeline(ROOM)[0].sender == "@me:example.org"

    @pytest.mark.asyncio
    async def test_state_round_trip(self, client):
        assert await client.get_state_event(ROOM, METADATA_EVENT_TYPE, "$root") is None

        await client.send_state_event(ROOM, METADATA_EVENT_TYPE, "$root", {"title": "T"})

        assert await client.get_state_event(ROOM, METADATA_EVENT_TYPE, "$root") == {"title": "T"}

    @pytest.mark.asyncio
    async def test_fetch_timeline_oldest_first(self, client):
        events = await client.fetch_timeline(ROOM)

        assert [e.event_id for e in events] == ["$1", "$2"]
        assert events[0].room_id == ROOM
        assert ThreadSync(client).load_threads_from_room(ROOM) == {"$1": [events[1]]}

    @pytest.mark.asyncio
    async def test_error_response_raises(self):
        client = MatrixClient(
            "https://hs.example.org",
            "wrong",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(401, json={"errcode": "M_UNKNOWN_TOKEN", "error": "bad token"})
            ),
        )

        with pytest.raises(ProtocolError) as exc_info:
            await client.send_event(ROOM, "m.room.message", {"body": "hi"})

        assert exc_info.value.status_code == 401
        assert exc_info.value.errcode == "M_UNKNOWN_TOKEN"

    @pytest.mark.asyncio
    async def test_sync_over_http(self, client):
        """ThreadSync works end to end against the HTTP client"""
        sync = ThreadSync(client)

        root_id = await sync.create_thread_root(ROOM, "Root")
        updated = await sync.update_thread_metadata(ROOM, root_id, title="Launch")

        assert root_id == "$sent"
        assert updated.title == "Launch"
        assert (await sync.load_thread_metadata(ROOM, root_id)).title == "Launch"

    @pytest.mark.asyncio
    async def test_import_fetches_remote_threads(self, client, requests):
        """Threads that only exist on the homeserver are imported"""
        service = ThreadService(sync=ThreadSync(client))
        await service.initialize()

        created = await service.import_native_threads(ROOM)

        assert any(r.url.path.endswith("/messages") for r in requests)
        assert len(created) == 1
        thread = service.get_thread(created[0])
        assert thread.root_event_id == "$1"
        assert thread.title == "root"
        assert thread.main_branch.message_ids == ["$1", "$2"]
