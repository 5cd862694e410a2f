"""Tests for the Message envelope."""

from __future__ import annotations

import json
import uuid
from datetime import timezone
from typing import Any

import pytest

from checkin_messaging.exceptions import InvalidMessageError
from checkin_messaging.message import KNOWN_MESSAGE_TYPES, Message, MessageType


def test_create_assigns_id_and_utc_timestamp() -> None:
    m = Message.create(MessageType.CHECKIN_PERFORMED, {"checkin_id": "c1"})
    uuid.UUID(m.id)
    assert m.type == "checkin.performed"
    assert m.headers == {}
    assert m.retry == 0
    assert m.timestamp.tzinfo is not None
    assert m.timestamp.utcoffset() == timezone.utc.utcoffset(None)


def test_ids_are_unique() -> None:
    assert Message.create("x.y").id != Message.create("x.y").id


def test_typed_headers() -> None:
    m = (
        Message.create("user.created")
        .set_tenant_id("t1")
        .set_user_id("u1")
        .set_correlation_id("c1")
    )
    assert m.get_tenant_id() == "t1"
    assert m.get_user_id() == "u1"
    assert m.get_correlation_id() == "c1"
    assert m.get_header("tenant_id") == "t1"


def test_typed_getters_ignore_non_strings() -> None:
    m = Message.create("user.created").set_header("tenant_id", 42)
    assert m.get_tenant_id() is None
    assert m.get_user_id() is None
    assert m.get_header("missing", "fallback") == "fallback"


def test_increment_retry_is_chainable() -> None:
    m = Message.create("user.created")
    assert m.increment_retry().increment_retry() is m
    assert m.retry == 2


def test_json_wire_format() -> None:
    m = Message.create("event.created", {"event_id": "e1"}).set_tenant_id("t1")
    data = json.loads(m.to_json())
    assert set(data) == {"id", "type", "body", "headers", "timestamp", "retry"}
    assert data["body"] == {"event_id": "e1"}
    assert data["headers"] == {"tenant_id": "t1"}


@pytest.mark.parametrize(
    "body",
    [
        {"event_id": "e1"},
        ["a", 1, 2.5, True, None],
        {"checkin": {"ids": [1, 2], "meta": {"late": False}}},
        None,
        42,
        3.25,
        "plain text",
    ],
)
def test_from_json_restores_fields(body: Any) -> None:
    m = Message.create("event.created", body).set_tenant_id("t1")
    m.set_header("attempt", 3).set_header("score", 0.5)
    m.set_header("urgent", True).set_header("missing", None)
    m.set_header("tags", ["a", "b"]).set_header("origin", {"svc": "api", "n": 1})
    m.increment_retry()
    decoded = Message.from_json(m.to_json())
    assert decoded.model_dump() == m.model_dump()


def test_from_json_null_headers_become_empty() -> None:
    raw = '{"id": "m1", "type": "x.y", "body": null, "headers": null, "retry": 0}'
    m = Message.from_json(raw)
    assert m.headers == {}
    m.set_header("k", "v")
    assert m.get_header("k") == "v"


@pytest.mark.parametrize(
    "raw",
    [
        b"not json",
        b'{"id": "m1"}',
        b'{"id": "m1", "type": "x.y", "retry": -1}',
    ],
)
def test_from_json_rejects_malformed(raw: bytes) -> None:
    with pytest.raises(InvalidMessageError):
        Message.from_json(raw)


def test_known_message_types() -> None:
    assert "checkin.performed" in KNOWN_MESSAGE_TYPES
    assert "work_session.completed" in KNOWN_MESSAGE_TYPES
    assert "sms.sent" in KNOWN_MESSAGE_TYPES
    assert all("." in t for t in KNOWN_MESSAGE_TYPES)
