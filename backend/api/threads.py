"""
REST API endpoints for threads.

Thin layer over ThreadService: request validation with pydantic, unknown
ids mapped to 404, and 503 until the service has been initialized.
"""

from fastapi import APIRouter, HTTPException, Depends, Query
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any

from threads import service as service_module
from threads.models import (
    Thread,
    ThreadMessage,
    Sender,
    ContextualObject,
    ContextObjectType,
    MessageSource,
)
from threads.service import ThreadService
from utils import now_ms, unique_suffix


router = APIRouter(prefix="/api/threads", tags=["threads"])


# ─────────────────────────────────────────────────────────────────────────────
# Pydantic Models
# ─────────────────────────────────────────────────────────────────────────────

class ThreadCreate(BaseModel):
    room_id: str
    title: str
    description: Optional[str] = None
    created_by: Optional[str] = None


class MessageCreate(BaseModel):
    id: Optional[str] = None  # Generated when omitted
    sender_id: str
    sender_name: Optional[str] = None
    sender_avatar: Optional[str] = None
    content: str
    timestamp: Optional[int] = None  # epoch ms, defaults to now
    source: str = "custom"

    def to_message(self) -> ThreadMessage:
        message_id = self.id or f"msg-{unique_suffix()}"
        return ThreadMessage(
            id=message_id,
            event_id=message_id,
            source=MessageSource(self.source),
            sender=Sender(
                id=self.sender_id,
                name=self.sender_name or self.sender_id,
                avatar=self.sender_avatar,
            ),
            content=self.content,
            timestamp=self.timestamp if self.timestamp is not None else now_ms(),
        )


class AddMessageRequest(MessageCreate):
    branch_id: Optional[str] = None


class LinkRequest(BaseModel):
    room_id: str
    message: MessageCreate


class IngestRequest(BaseModel):
    source: str  # "matrix", "email", "sms", "slack"
    room_id: str
    events: List[Dict[str, Any]]


class BranchCreate(BaseModel):
    parent_message_id: Optional[str] = None
    topic: str
    description: Optional[str] = None


class MergeRequest(BaseModel):
    target_branch_id: Optional[str] = None


class ContextObjectCreate(BaseModel):
    type: str  # document, link, note, task, code, image, file
    title: str
    url: Optional[str] = None
    content: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ImportRequest(BaseModel):
    room_id: str


class SyncRequest(BaseModel):
    created_by: Optional[str] = None


class SendRequest(BaseModel):
    content: str
    sender_id: Optional[str] = None
    sender_name: Optional[str] = None


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def get_thread_service() -> ThreadService:
    """Current service instance (503 until startup has finished)."""
    service = service_module.thread_service
    if service is None or not service.is_initialized:
        raise HTTPException(status_code=503, detail="Thread service not initialized")
    return service


def require_thread(service: ThreadService, thread_id: str) -> Thread:
    thread = service.get_thread(thread_id)
    if not thread:
        raise HTTPException(status_code=404, detail=f"Thread '{thread_id}' not found")
    return thread


def parse_source(source: str) -> MessageSource:
    try:
        return MessageSource(source)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid message source: {source}")


# ─────────────────────────────────────────────────────────────────────────────
# Threads
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/")
async def list_threads(
    room_id: Optional[str] = None,
    include_archived: bool = False,
    service: ThreadService = Depends(get_thread_service)
):
    """List threads, optionally limited to one room."""
    threads = service.get_threads(room_id, include_archived=include_archived)
    return {"threads": [t.to_dict() for t in threads]}


@router.post("/")
async def create_thread(data: ThreadCreate, service: ThreadService = Depends(get_thread_service)):
    thread = await service.create_thread(
        data.room_id,
        data.title,
        description=data.description,
        created_by=data.created_by,
    )
    return {"thread": thread.to_dict()}


@router.get("/stats")
async def get_stats(service: ThreadService = Depends(get_thread_service)):
    return await service.get_stats()


@router.post("/link")
async def link_message(data: LinkRequest, service: ThreadService = Depends(get_thread_service)):
    """Route a message into the best matching thread of its room (or a new one)."""
    parse_source(data.message.source)
    result = await service.link_message(data.message.to_message(), data.room_id)
    return result.to_dict()


@router.post("/ingest")
async def ingest_events(data: IngestRequest, service: ThreadService = Depends(get_thread_service)):
    """
    Convert raw events from one source and link them in order.

    Events the source adapter cannot convert are skipped.
    """
    source = parse_source(data.source)
    links = await service.ingest_events(source, data.events, data.room_id)
    return {"links": links}


@router.post("/import")
async def import_native_threads(data: ImportRequest, service: ThreadService = Depends(get_thread_service)):
    """Adopt protocol-native threads found in the room's latest timeline page."""
    imported = await service.import_native_threads(data.room_id)
    return {"imported": imported}


@router.get("/{thread_id}")
async def get_thread(thread_id: str, service: ThreadService = Depends(get_thread_service)):
    thread = require_thread(service, thread_id)
    return {"thread": thread.to_dict()}


@router.delete("/{thread_id}")
async def delete_thread(thread_id: str, service: ThreadService = Depends(get_thread_service)):
    if not await service.delete_thread(thread_id):
        raise HTTPException(status_code=404, detail=f"Thread '{thread_id}' not found")
    return {"deleted": thread_id}


@router.post("/{thread_id}/archive")
async def archive_thread(thread_id: str, service: ThreadService = Depends(get_thread_service)):
    if not await service.archive_thread(thread_id):
        raise HTTPException(status_code=404, detail=f"Thread '{thread_id}' not found")
    return {"thread": service.get_thread(thread_id).to_dict()}


# ─────────────────────────────────────────────────────────────────────────────
# Messages and Branches
# ─────────────────────────────────────────────────────────────────────────────

@router.post("/{thread_id}/messages")
async def add_message(
    thread_id: str,
    data: AddMessageRequest,
    service: ThreadService = Depends(get_thread_service)
):
    parse_source(data.source)
    message = data.to_message()
    if not await service.add_message(thread_id, message, data.branch_id):
        raise HTTPException(status_code=404, detail=f"Thread '{thread_id}' not found")
    return {"message": message.to_dict()}


@router.post("/{thread_id}/branches")
async def create_branch(
    thread_id: str,
    data: BranchCreate,
    service: ThreadService = Depends(get_thread_service)
):
    branch = await service.create_branch(thread_id, data.parent_message_id, data.topic, data.description)
    if not branch:
        raise HTTPException(status_code=404, detail=f"Thread '{thread_id}' not found")
    return {"branch": branch.to_dict()}


@router.post("/{thread_id}/branches/{branch_id}/merge")
async def merge_branch(
    thread_id: str,
    branch_id: str,
    data: MergeRequest,
    service: ThreadService = Depends(get_thread_service)
):
    """Merge a sub-branch into another branch (main branch by default)."""
    require_thread(service, thread_id)
    if not await service.merge_branches(thread_id, branch_id, data.target_branch_id):
        raise HTTPException(status_code=404, detail=f"Branch '{branch_id}' cannot be merged")
    return {"thread": service.get_thread(thread_id).to_dict()}


@router.post("/{thread_id}/messages/{message_id}/objects")
async def attach_object(
    thread_id: str,
    message_id: str,
    data: ContextObjectCreate,
    service: ThreadService = Depends(get_thread_service)
):
    try:
        object_type = ContextObjectType(data.type)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid object type: {data.type}")

    now = now_ms()
    obj = ContextualObject(
        id=f"obj-{unique_suffix()}",
        type=object_type,
        title=data.title,
        url=data.url,
        content=data.content,
        metadata=data.metadata,
        created_at=now,
        updated_at=now,
    )
    if not await service.attach_contextual_object(thread_id, message_id, obj):
        raise HTTPException(status_code=404, detail=f"Message '{message_id}' not found in thread '{thread_id}'")
    return {"object": obj.to_dict()}


@router.post("/{thread_id}/related/{other_thread_id}")
async def link_threads(
    thread_id: str,
    other_thread_id: str,
    service: ThreadService = Depends(get_thread_service)
):
    if not await service.link_threads(thread_id, other_thread_id):
        raise HTTPException(status_code=404, detail="Both threads must exist and differ")
    return {"linked": [thread_id, other_thread_id]}


# ─────────────────────────────────────────────────────────────────────────────
# Analysis
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/{thread_id}/summary")
async def get_summary(
    thread_id: str,
    use_ai: bool = False,
    service: ThreadService = Depends(get_thread_service)
):
    summary = await service.summarize_thread(thread_id, use_ai=use_ai)
    if summary is None:
        raise HTTPException(status_code=404, detail=f"Thread '{thread_id}' not found")
    return {"summary": summary}


@router.get("/{thread_id}/key-points")
async def get_key_points(thread_id: str, service: ThreadService = Depends(get_thread_service)):
    key_points = await service.get_key_points(thread_id)
    if key_points is None:
        raise HTTPException(status_code=404, detail=f"Thread '{thread_id}' not found")
    return {"key_points": key_points}


@router.get("/{thread_id}/action-items")
async def get_action_items(thread_id: str, service: ThreadService = Depends(get_thread_service)):
    action_items = await service.get_action_items(thread_id)
    if action_items is None:
        raise HTTPException(status_code=404, detail=f"Thread '{thread_id}' not found")
    return {"action_items": action_items}


@router.get("/{thread_id}/analysis")
async def get_analysis(thread_id: str, service: ThreadService = Depends(get_thread_service)):
    analysis = service.get_thread_analysis(thread_id)
    if analysis is None:
        raise HTTPException(status_code=404, detail=f"Thread '{thread_id}' not found")
    return analysis


@router.get("/{thread_id}/related")
async def get_related(
    thread_id: str,
    threshold: float = Query(0.5, ge=0.0, le=1.0),
    service: ThreadService = Depends(get_thread_service)
):
    require_thread(service, thread_id)
    related = service.get_related_threads(thread_id, threshold)
    return {
        "related": [
            {"id": t.id, "title": t.title, "score": round(score, 3)}
            for t, score in related
        ]
    }


# ─────────────────────────────────────────────────────────────────────────────
# Protocol Sync
# ─────────────────────────────────────────────────────────────────────────────

@router.post("/{thread_id}/sync")
async def sync_thread(
    thread_id: str,
    data: SyncRequest,
    service: ThreadService = Depends(get_thread_service)
):
    """Create the native thread root if needed and publish metadata."""
    thread = require_thread(service, thread_id)
    root_event_id = await service.sync_thread(thread_id, data.created_by)
    return {
        "root_event_id": root_event_id,
        "sync_state": thread.metadata.get("sync_state"),
    }


@router.post("/{thread_id}/send")
async def send_to_thread(
    thread_id: str,
    data: SendRequest,
    service: ThreadService = Depends(get_thread_service)
):
    require_thread(service, thread_id)
    sender = None
    if data.sender_id:
        sender = Sender(id=data.sender_id, name=data.sender_name or data.sender_id)

    message = await service.send_to_thread(thread_id, data.content, sender)
    if not message:
        raise HTTPException(status_code=502, detail="Message could not be delivered to the protocol")
    return {"message": message.to_dict()}
