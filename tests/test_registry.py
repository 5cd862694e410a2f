"""Tests for HandlerRegistry."""

from __future__ import annotations

import logging
from typing import ClassVar

import pytest

from checkin_messaging.exceptions import HandlerRegistrationError
from checkin_messaging.handlers.base import MessageHandler
from checkin_messaging.message import KNOWN_MESSAGE_TYPES, Message
from checkin_messaging.registry import HandlerRegistry


class _UserHandler(MessageHandler):
    message_types: ClassVar[frozenset[str]] = frozenset({"user.created"})

    async def handle(self, message: Message) -> None:
        return None


class _OtherUserHandler(_UserHandler):
    pass


def test_register_and_get() -> None:
    registry = HandlerRegistry()
    handler = _UserHandler()
    registry.register("user.created", handler)
    assert registry.get("user.created") is handler
    assert "user.created" in registry
    assert len(registry) == 1
    assert registry.get("user.deleted") is None


def test_last_registration_wins(caplog: pytest.LogCaptureFixture) -> None:
    registry = HandlerRegistry()
    registry.register("user.created", _UserHandler())
    replacement = _OtherUserHandler()
    with caplog.at_level(logging.WARNING, logger="checkin_messaging.registry"):
        registry.register("user.created", replacement)
    assert registry.get("user.created") is replacement
    assert len(registry) == 1
    assert "Replaced handler for user.created" in caplog.text


def test_unregister_returns_handler() -> None:
    registry = HandlerRegistry()
    handler = _UserHandler()
    registry.register("user.created", handler)
    assert registry.unregister("user.created") is handler
    assert registry.unregister("user.created") is None
    assert len(registry) == 0


def test_types_and_names_are_sorted() -> None:
    registry = HandlerRegistry()
    registry.register("user.updated", _OtherUserHandler())
    registry.register("user.created", _UserHandler())
    assert registry.types() == ["user.created", "user.updated"]
    assert registry.names() == [
        "user.created -> _UserHandler",
        "user.updated -> _OtherUserHandler",
    ]


def test_validate_accepts_known_types() -> None:
    registry = HandlerRegistry()
    registry.register("user.created", _UserHandler())
    registry.validate(KNOWN_MESSAGE_TYPES)


def test_validate_reports_unknown_types() -> None:
    registry = HandlerRegistry()
    registry.register("user.created", _UserHandler())
    registry.register("user.exploded", _UserHandler())
    with pytest.raises(HandlerRegistrationError, match="user.exploded"):
        registry.validate(KNOWN_MESSAGE_TYPES)
