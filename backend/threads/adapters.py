"""
Source adapters.

Each adapter converts one external message representation into the
canonical ThreadMessage. Adapters may raise on malformed input; the linker
catches that and skips the message.
"""

from datetime import datetime
from typing import Dict, Any, Callable, Union

from protocol import TimelineEvent
from utils import unique_suffix
from .models import ThreadMessage, MessageSource, Sender

SourceAdapter = Callable[[Any], ThreadMessage]


def display_name_from_user_id(user_id: str) -> str:
    """'@alice:example.org' -> 'alice'."""
    localpart = user_id.split(":")[0].lstrip("@")
    return localpart or "Unknown"


def _to_ms(value: Union[datetime, int, float, str]) -> int:
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    if isinstance(value, str):
        return int(datetime.fromisoformat(value).timestamp() * 1000)
    return int(value)


def matrix_adapter(event: Union[TimelineEvent, Dict[str, Any]]) -> ThreadMessage:
    """Room message event (TimelineEvent or raw client-server JSON)."""
    if not isinstance(event, TimelineEvent):
        event = TimelineEvent.from_dict(event)

    sender = event.sender or "unknown"
    return ThreadMessage(
        id=event.event_id or f"matrix-{unique_suffix()}",
        event_id=event.event_id or "",
        source=MessageSource.MATRIX,
        sender=Sender(id=sender, name=display_name_from_user_id(sender)),
        content=event.body,
        timestamp=event.origin_server_ts,
        raw_event=event,
    )


def email_adapter(email: Dict[str, Any]) -> ThreadMessage:
    message_id = email.get("message_id")
    return ThreadMessage(
        id=message_id or f"email-{unique_suffix()}",
        event_id=message_id or "",
        source=MessageSource.EMAIL,
        sender=Sender(
            id=email["from"],
            name=email.get("from_name") or email["from"],
            avatar=email.get("avatar"),
        ),
        content=email.get("body") or "",
        timestamp=_to_ms(email["date"]),
        metadata={"subject": email["subject"]} if email.get("subject") else {},
        raw_event=email,
    )


def sms_adapter(sms: Dict[str, Any]) -> ThreadMessage:
    sms_id = sms.get("id")
    return ThreadMessage(
        id=sms_id or f"sms-{unique_suffix()}",
        event_id=sms_id or "",
        source=MessageSource.SMS,
        sender=Sender(id=sms["from"], name=sms.get("from_name") or sms["from"]),
        content=sms.get("body") or "",
        timestamp=_to_ms(sms["timestamp"]),
        raw_event=sms,
    )


def slack_adapter(payload: Dict[str, Any]) -> ThreadMessage:
    """Slack message payload; `ts` is seconds with a microsecond fraction."""
    ts = payload["ts"]
    return ThreadMessage(
        id=payload.get("client_msg_id") or f"slack-{ts}",
        event_id=ts,
        source=MessageSource.SLACK,
        sender=Sender(id=payload["user"], name=payload.get("user_name") or payload["user"]),
        content=payload.get("text") or "",
        timestamp=int(float(ts) * 1000),
        metadata={"channel": payload["channel"]} if payload.get("channel") else {},
        raw_event=payload,
    )


DEFAULT_ADAPTERS: Dict[MessageSource, SourceAdapter] = {
    MessageSource.MATRIX: matrix_adapter,
    MessageSource.EMAIL: email_adapter,
    MessageSource.SMS: sms_adapter,
    MessageSource.SLACK: slack_adapter,
}
