"""Unit tests for Publisher with a mocked connection (no real broker)."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from checkin_messaging.config import ConnectionConfig, PublisherConfig
from checkin_messaging.connection import ConnectionManager
from checkin_messaging.correlation import correlation_scope
from checkin_messaging.exceptions import (
    InvalidMessageError,
    NotConnectedError,
    PublishFailedError,
    PublishTimeoutError,
)
from checkin_messaging.instrumentation import HookRegistry, set_hook_registry
from checkin_messaging.message import Message
from checkin_messaging.payloads import CheckinEventPayload, SystemEventPayload
from checkin_messaging.publisher import Publisher


@pytest.fixture
def mock_connection() -> MagicMock:
    conn = MagicMock()
    conn.publish = AsyncMock()
    conn.health_check = AsyncMock(return_value=True)
    return conn


def make_publisher(connection: Any, **overrides: Any) -> Publisher:
    values: dict[str, Any] = {"default_exchange": "events", "retry_delay": 0.0}
    values.update(overrides)
    return Publisher(connection, PublisherConfig(**values))


@pytest.mark.asyncio
async def test_publish_first_attempt(mock_connection: MagicMock) -> None:
    publisher = make_publisher(mock_connection)
    message = Message.create("user.created")
    await publisher.publish("users", "user.events", message)
    mock_connection.publish.assert_awaited_once_with("users", "user.events", message)


@pytest.mark.asyncio
async def test_empty_exchange_uses_default(mock_connection: MagicMock) -> None:
    publisher = make_publisher(mock_connection)
    message = Message.create("user.created")
    await publisher.publish("", "user.events", message)
    assert mock_connection.publish.call_args.args[0] == "events"


@pytest.mark.asyncio
async def test_retries_until_success(mock_connection: MagicMock) -> None:
    mock_connection.publish.side_effect = [
        NotConnectedError(),
        NotConnectedError(),
        None,
    ]
    publisher = make_publisher(mock_connection, max_retries=3)
    await publisher.publish("", "k", Message.create("system.info"))
    assert mock_connection.publish.await_count == 3


@pytest.mark.asyncio
async def test_exhausted_attempts_raise_with_last_error(
    mock_connection: MagicMock,
) -> None:
    mock_connection.publish.side_effect = NotConnectedError()
    publisher = make_publisher(mock_connection, max_retries=2)
    with pytest.raises(PublishFailedError) as exc_info:
        await publisher.publish("", "k", Message.create("system.info"))
    assert mock_connection.publish.await_count == 3
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.last_error, NotConnectedError)
    assert exc_info.value.__cause__ is exc_info.value.last_error
    assert "after 3 attempts" in str(exc_info.value)


@pytest.mark.asyncio
async def test_disconnected_manager_fails_without_blocking() -> None:
    manager = ConnectionManager(ConnectionConfig(), connector=AsyncMock())
    publisher = Publisher(
        manager, PublisherConfig(max_retries=2, retry_delay=0.01, default_timeout=5.0)
    )
    with pytest.raises(PublishFailedError) as exc_info:
        await asyncio.wait_for(
            publisher.publish("", "k", Message.create("system.error")), timeout=1.0
        )
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.last_error, NotConnectedError)


@pytest.mark.asyncio
async def test_overall_timeout_bounds_retries(mock_connection: MagicMock) -> None:
    async def hang(*_args: Any) -> None:
        await asyncio.sleep(10)

    mock_connection.publish.side_effect = hang
    publisher = make_publisher(
        mock_connection, max_retries=5, retry_delay=1.0, default_timeout=0.05
    )
    loop = asyncio.get_running_loop()
    started = loop.time()
    with pytest.raises(PublishTimeoutError) as exc_info:
        await publisher.publish("", "k", Message.create("system.info"))
    assert loop.time() - started < 1.0
    assert isinstance(exc_info.value, PublishFailedError)
    assert exc_info.value.attempts >= 1
    assert isinstance(exc_info.value.last_error, asyncio.TimeoutError)


@pytest.mark.asyncio
async def test_invalid_message_is_not_retried(mock_connection: MagicMock) -> None:
    mock_connection.publish.side_effect = InvalidMessageError("cannot encode")
    publisher = make_publisher(mock_connection, max_retries=3)
    with pytest.raises(InvalidMessageError):
        await publisher.publish("", "k", Message.create("system.info"))
    assert mock_connection.publish.await_count == 1


@pytest.mark.asyncio
async def test_correlation_id_from_context(mock_connection: MagicMock) -> None:
    publisher = make_publisher(mock_connection)
    message = Message.create("system.info")
    with correlation_scope("corr-42"):
        await publisher.publish("", "k", message)
    assert message.get_correlation_id() == "corr-42"

    explicit = Message.create("system.info").set_correlation_id("mine")
    with correlation_scope("corr-42"):
        await publisher.publish("", "k", explicit)
    assert explicit.get_correlation_id() == "mine"


@pytest.mark.asyncio
async def test_publish_checkin_event_wrapper(mock_connection: MagicMock) -> None:
    publisher = make_publisher(mock_connection)
    payload = CheckinEventPayload(
        checkin_id="c1",
        tenant_id="t1",
        event_id="e1",
        employee_id="emp1",
        partner_id="p1",
        method="qr_code",
        is_valid=True,
        checkin_time=datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc),
    )
    message = await publisher.publish_checkin_event("checkin.performed", payload)

    exchange, routing_key, sent = mock_connection.publish.call_args.args
    assert (exchange, routing_key) == ("events", "checkin.events")
    assert sent is message
    assert sent.type == "checkin.performed"
    assert sent.get_tenant_id() == "t1"
    assert sent.body["checkin_id"] == "c1"
    assert sent.body["checkin_time"].startswith("2024-05-01T08:30:00")


@pytest.mark.asyncio
async def test_system_event_has_no_tenant(mock_connection: MagicMock) -> None:
    publisher = make_publisher(mock_connection)
    payload = SystemEventPayload(level="error", message="disk full")
    message = await publisher.publish_system_event("system.error", payload)
    assert mock_connection.publish.call_args.args[1] == "system.events"
    assert message.get_tenant_id() is None


@pytest.mark.asyncio
async def test_publish_delayed_sets_header_in_ms(mock_connection: MagicMock) -> None:
    publisher = make_publisher(mock_connection)
    message = Message.create("notification.sent")
    await publisher.publish_delayed("delayed", "notification.events", message, 1.5)
    assert message.get_header("x-delay") == 1500


@pytest.mark.asyncio
async def test_publish_batch_reports_failures(mock_connection: MagicMock) -> None:
    mock_connection.publish.side_effect = [None, NotConnectedError(), None]
    publisher = make_publisher(mock_connection, max_retries=0)
    batch = [
        ("a", Message.create("email.sent")),
        ("b", Message.create("email.sent")),
        ("c", Message.create("email.sent")),
    ]
    with pytest.raises(PublishFailedError, match="1 of 3"):
        await publisher.publish_batch("", batch)
    assert mock_connection.publish.await_count == 3


@pytest.mark.asyncio
async def test_publish_batch_accepts_mapping(mock_connection: MagicMock) -> None:
    publisher = make_publisher(mock_connection)
    await publisher.publish_batch(
        "", {"a": Message.create("sms.sent"), "b": Message.create("sms.sent")}
    )
    assert mock_connection.publish.await_count == 2
    await publisher.publish_batch("", {})
    assert mock_connection.publish.await_count == 2


@pytest.mark.asyncio
async def test_publish_runs_inside_hooks(mock_connection: MagicMock) -> None:
    hooks = HookRegistry()
    set_hook_registry(hooks)
    operations: list[str] = []

    async def hook(
        operation: str, attributes: dict[str, Any], next_handler: Any
    ) -> Any:
        operations.append(f"{operation}:{attributes['routing_key']}")
        return await next_handler()

    hooks.register(hook, operations=["message.publish"])
    try:
        await make_publisher(mock_connection).publish("", "k", Message.create("x.y"))
    finally:
        set_hook_registry(None)
    assert operations == ["message.publish:k"]


@pytest.mark.asyncio
async def test_health_check_delegates_to_connection(
    mock_connection: MagicMock,
) -> None:
    mock_connection.health_check.return_value = False
    assert await make_publisher(mock_connection).health_check() is False
    mock_connection.health_check.assert_called_once()


@pytest.mark.asyncio
async def test_publish_batch_continues_past_unencodable_message(
    mock_connection: MagicMock,
) -> None:
    mock_connection.publish.side_effect = [
        None,
        InvalidMessageError("cannot encode"),
        None,
    ]
    publisher = make_publisher(mock_connection, max_retries=2)
    batch = [
        ("a", Message.create("email.sent")),
        ("b", Message.create("email.sent")),
        ("c", Message.create("email.sent")),
    ]
    with pytest.raises(PublishFailedError, match="1 of 3") as exc_info:
        await publisher.publish_batch("", batch)
    assert mock_connection.publish.await_count == 3
    assert isinstance(exc_info.value.last_error, InvalidMessageError)


@pytest.mark.asyncio
async def test_timeout_on_only_attempt_is_a_timeout(
    mock_connection: MagicMock,
) -> None:
    async def hang(*_args: Any) -> None:
        await asyncio.sleep(10)

    mock_connection.publish.side_effect = hang
    publisher = make_publisher(
        mock_connection, max_retries=0, retry_delay=0.0, default_timeout=0.05
    )
    with pytest.raises(PublishTimeoutError) as exc_info:
        await publisher.publish("", "k", Message.create("system.info"))
    assert exc_info.value.attempts == 1
    assert isinstance(exc_info.value.last_error, asyncio.TimeoutError)
