from datetime import datetime, timezone

import pytest
from protocol import TimelineEvent
from threads.adapters import (
    matrix_adapter,
    email_adapter,
    sms_adapter,
    slack_adapter,
    display_name_from_user_id,
)
from threads.models import MessageSource


class TestSourceAdapters:
    """Tests for converting source payloads into ThreadMessage"""

    def test_matrix_timeline_event(self):
        event = TimelineEvent(
            event_id="$abc",
            room_id="!room:example.org",
            sender="@alice:example.org",
            type="m.room.message",
            origin_server_ts=1700000000000,
            content={"body": "hello", "msgtype": "m.text"},
        )

        message = matrix_adapter(event)

        assert message.id == "$abc"
        assert message.event_id == "$abc"
        assert message.source == MessageSource.MATRIX
        assert message.sender.id == "@alice:example.org"
        assert message.sender.name == "alice"
        assert message.content == "hello"
        assert message.timestamp == 1700000000000
        assert message.raw_event is event

    def test_matrix_raw_json(self):
        message = matrix_adapter({
            "event_id": "$def",
            "sender": "@bob:example.org",
            "type": "m.room.message",
            "origin_server_ts": 42,
            "content": {"body": "hi"},
        })

        assert message.id == "$def"
        assert message.content == "hi"
        assert message.timestamp == 42

    def test_email(self):
        date = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        message = email_adapter({
            "message_id": "<1@mail>",
            "from": "carol@example.org",
            "from_name": "Carol",
            "subject": "Budget",
            "body": "See attached",
            "date": date,
        })

        assert message.id == "<1@mail>"
        assert message.source == MessageSource.EMAIL
        assert message.sender.name == "Carol"
        assert message.timestamp == int(date.timestamp() * 1000)
        assert message.metadata == {"subject": "Budget"}

    def test_email_without_id_gets_generated_one(self):
        message = email_adapter({"from": "dan@example.org", "date": 1000, "body": "x"})

        assert message.id.startswith("email-")
        assert message.sender.name == "dan@example.org"
        assert message.timestamp == 1000

    def test_email_iso_date(self):
        message = email_adapter({"from": "a@b", "date": "2024-01-01T00:00:00+00:00"})

        assert message.timestamp == 1704067200000

    def test_sms(self):
        message = sms_adapter({"id": "s1", "from": "+15550100", "body": "on my way", "timestamp": 5000})

        assert message.id == "s1"
        assert message.source == MessageSource.SMS
        assert message.sender.id == "+15550100"
        assert message.content == "on my way"

    def test_slack(self):
        message = slack_adapter({
            "ts": "1700000000.123456",
            "user": "U123",
            "user_name": "erin",
            "text": "shipping now",
            "channel": "C1",
        })

        assert message.id == "slack-1700000000.123456"
        assert message.event_id == "1700000000.123456"
        assert message.timestamp == 1700000000123
        assert message.sender.name == "erin"
        assert message.metadata == {"channel": "C1"}

    def test_missing_required_field_raises(self):
        with pytest.raises(KeyError):
            slack_adapter({"text": "no ts"})

    def test_display_name_from_user_id(self):
        assert display_name_from_user_id("@alice:example.org") == "alice"
        assert display_name_from_user_id("bob") == "bob"
        assert display_name_from_user_id("@:example.org") == "Unknown"
