"""Tests for instrumentation hooks and correlation context."""

from __future__ import annotations

from typing import Any

import pytest

from checkin_messaging.correlation import (
    correlation_scope,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from checkin_messaging.instrumentation import (
    HookRegistry,
    get_hook_registry,
    set_hook_registry,
)


def _recording_hook(name: str, log: list[str]) -> Any:
    async def hook(
        operation: str, attributes: dict[str, Any], next_handler: Any
    ) -> Any:
        log.append(f"{name}:before")
        result = await next_handler()
        log.append(f"{name}:after")
        return result

    return hook


@pytest.mark.asyncio
async def test_hooks_run_in_priority_order() -> None:
    registry = HookRegistry()
    log: list[str] = []
    registry.register(_recording_hook("inner", log), priority=10)
    registry.register(_recording_hook("outer", log), priority=0)

    async def op() -> str:
        log.append("op")
        return "done"

    assert await registry.execute_all("message.publish", {}, op) == "done"
    assert log == ["outer:before", "inner:before", "op", "inner:after", "outer:after"]


@pytest.mark.asyncio
async def test_filters_by_operation_and_message_type() -> None:
    registry = HookRegistry()
    log: list[str] = []
    registry.register(_recording_hook("pub", log), operations=["message.publish"])
    registry.register(_recording_hook("checkin", log), message_types=["checkin.*"])
    registry.register(_recording_hook("off", log), enabled=False)

    async def op() -> None:
        return None

    attrs = {"message_type": "checkin.invalid"}
    await registry.execute_all("message.handle", attrs, op)
    assert log == ["checkin:before", "checkin:after"]

    log.clear()
    await registry.execute_all("message.publish", {"message_type": "user.created"}, op)
    assert log == ["pub:before", "pub:after"]


@pytest.mark.asyncio
async def test_clear_and_len() -> None:
    registry = HookRegistry()
    registry.register(_recording_hook("a", []))
    assert len(registry) == 1
    registry.clear()
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_context_registry_overrides_default() -> None:
    default = get_hook_registry()
    mine = HookRegistry()
    set_hook_registry(mine)
    try:
        assert get_hook_registry() is mine
    finally:
        set_hook_registry(None)
    assert get_hook_registry() is default


def test_correlation_scope_restores_previous() -> None:
    set_correlation_id("outer")
    with correlation_scope("inner") as cid:
        assert cid == "inner"
        assert get_correlation_id() == "inner"
    assert get_correlation_id() == "outer"
    set_correlation_id(None)


def test_generated_ids_are_unique() -> None:
    assert generate_correlation_id() != generate_correlation_id()
