"""
Matrix client-server API client.

Talks to a homeserver over HTTP (httpx) and keeps the loaded timeline
window per room, the way a protocol SDK's live timeline does.
"""

import logging
import uuid
from typing import Dict, List, Any, Optional
from urllib.parse import quote

import httpx

from utils import now_ms
from .base import ProtocolClient, ProtocolError, TimelineEvent

logger = logging.getLogger(__name__)


class MatrixClient(ProtocolClient):
    """
    Minimal Matrix client for thread sync.

    Only covers what the sync bridge needs: sending events, room state
    get/put, and fetching the latest page of a room timeline.
    """

    API_PREFIX = "/_matrix/client/v3"

    def __init__(
        self,
        homeserver: str,
        access_token: Optional[str],
        user_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0
    ):
        """
        Initialize Matrix client.

        Args:
            homeserver: Base URL of the homeserver (e.g. https://matrix.org)
            access_token: Access token of the logged-in user
            user_id: Fully qualified user id, used for local echo
            transport: Optional httpx transport (tests inject a MockTransport)
            timeout: Per-request timeout in seconds
        """
        self.homeserver = homeserver.rstrip("/")
        self.access_token = access_token
        self.user_id = user_id
        self._transport = transport
        self._timeout = timeout

        # room_id -> loaded events, oldest first
        self._timelines: Dict[str, List[TimelineEvent]] = {}

    def _room_path(self, room_id: str, *parts: str) -> str:
        encoded = "/".join(quote(p, safe="") for p in parts)
        return f"{self.API_PREFIX}/rooms/{quote(room_id, safe='')}/{encoded}"

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = {"Accept": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"

        async with httpx.AsyncClient(
            base_url=self.homeserver,
            headers=headers,
            transport=self._transport,
            timeout=self._timeout,
        ) as client:
            return await client.request(method, path, **kwargs)

    @staticmethod
    def _raise_for_error(response: httpx.Response) -> None:
        if response.is_success:
            return

        errcode = None
        error = response.text
        try:
            data = response.json()
            errcode = data.get("errcode")
            error = data.get("error", error)
        except ValueError:
            pass
        raise ProtocolError(
            f"{response.request.method} {response.request.url.path} failed: {response.status_code} {error}",
            status_code=response.status_code,
            errcode=errcode,
        )

    async def send_event(self, room_id: str, event_type: str, content: Dict[str, Any]) -> str:
        txn_id = uuid.uuid4().hex
        response = await self._request(
            "PUT",
            self._room_path(room_id, "send", event_type, txn_id),
            json=content,
        )
        self._raise_for_error(response)
        event_id = response.json()["event_id"]

        # Local echo so the sent event is visible in the loaded window
        self._timelines.setdefault(room_id, []).append(TimelineEvent(
            event_id=event_id,
            room_id=room_id,
            sender=self.user_id or "",
            type=event_type,
            origin_server_ts=now_ms(),
            content=content,
        ))
        return event_id

    async def send_state_event(
        self,
        room_id: str,
        event_type: str,
        state_key: str,
        content: Dict[str, Any]
    ) -> str:
        response = await self._request(
            "PUT",
            self._room_path(room_id, "state", event_type, state_key),
            json=content,
        )
        self._raise_for_error(response)
        return response.json().get("event_id", "")

    async def get_state_event(
        self,
        room_id: str,
        event_type: str,
        state_key: str
    ) -> Optional[Dict[str, Any]]:
        response = await self._request(
            "GET",
            self._room_path(room_id, "state", event_type, state_key),
        )
        if response.status_code == 404:
            return None
        self._raise_for_error(response)
        return response.json()

    async def fetch_timeline(self, room_id: str, limit: int = 50) -> List[TimelineEvent]:
        """
        Load the latest page of a room timeline, replacing the loaded window.

        Older history stays invisible until a caller fetches a bigger page.
        """
        response = await self._request(
            "GET",
            self._room_path(room_id, "messages"),
            params={"dir": "b", "limit": limit},
        )
        self._raise_for_error(response)

        # dir=b returns newest first
        chunk = response.json().get("chunk", [])
        events = [TimelineEvent.from_dict(e, room_id=room_id) for e in reversed(chunk)]
        self._timelines[room_id] = events
        logger.debug(f"Loaded {len(events)} events for room {room_id}")
        return list(events)

    async def load_timeline(self, room_id: str) -> List[TimelineEvent]:
        return await self.fetch_timeline(room_id)

    def get_timeline(self, room_id: str) -> List[TimelineEvent]:
        return list(self._timelines.get(room_id, []))
