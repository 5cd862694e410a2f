"""Instrumentation hooks wrapped around publish and handle operations.

A hook is an async callable ``(operation, attributes, next_handler)`` that
must await ``next_handler()`` exactly once and return its result. Hooks are
the seam for tracing and metrics; the library itself registers none.
"""

from __future__ import annotations

import fnmatch
import functools
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    Operation = Callable[[], Awaitable[Any]]


PUBLISH_OPERATION = "message.publish"
HANDLE_OPERATION = "message.handle"


@runtime_checkable
class InstrumentationHook(Protocol):
    async def __call__(
        self,
        operation: str,
        attributes: dict[str, Any],
        next_handler: Callable[[], Awaitable[Any]],
    ) -> Any: ...


def _any_glob(value: str, patterns: tuple[str, ...]) -> bool:
    return any(fnmatch.fnmatchcase(value, pattern) for pattern in patterns)


@dataclass
class HookRegistration:
    """A hook plus the filters deciding which operations it wraps.

    Empty ``operations`` / ``message_types`` match everything. Attributes
    without a ``message_type`` pass the message-type filter.
    """

    hook: InstrumentationHook
    priority: int = 0
    operations: tuple[str, ...] = ()
    message_types: tuple[str, ...] = ()
    enabled: bool = True

    def applies_to(self, operation: str, attributes: dict[str, Any]) -> bool:
        if not self.enabled:
            return False
        if self.operations and not _any_glob(operation, self.operations):
            return False
        message_type = attributes.get("message_type")
        if not self.message_types or message_type is None:
            return True
        return _any_glob(str(message_type), self.message_types)


class HookRegistry:
    """Ordered set of hooks; lower ``priority`` wraps outermost."""

    def __init__(self) -> None:
        self._registrations: list[HookRegistration] = []

    def __len__(self) -> int:
        return len(self._registrations)

    def register(
        self,
        hook: InstrumentationHook,
        *,
        priority: int = 0,
        operations: Iterable[str] = (),
        message_types: Iterable[str] = (),
        enabled: bool = True,
    ) -> HookRegistration:
        registration = HookRegistration(
            hook,
            priority,
            tuple(operations),
            tuple(message_types),
            enabled,
        )
        self._registrations.append(registration)
        # stable sort keeps registration order within one priority
        self._registrations.sort(key=lambda r: r.priority)
        return registration

    def unregister(self, registration: HookRegistration) -> None:
        self._registrations.remove(registration)

    def clear(self) -> None:
        self._registrations.clear()

    async def execute_all(
        self,
        operation: str,
        attributes: dict[str, Any],
        next_handler: Operation,
    ) -> Any:
        """Run *next_handler* inside every hook that applies to *operation*."""
        chain = next_handler
        for registration in reversed(self._registrations):
            if registration.applies_to(operation, attributes):
                chain = functools.partial(
                    registration.hook, operation, attributes, chain
                )
        return await chain()


_current_registry: ContextVar[HookRegistry | None] = ContextVar(
    "checkin_messaging_hooks", default=None
)
_process_registry = HookRegistry()


def get_hook_registry() -> HookRegistry:
    """Return the context's registry, else the process-wide one.

    Consumer workers are spawned as separate tasks, so hooks meant for them
    belong on the process-wide registry.
    """
    registry = _current_registry.get()
    return _process_registry if registry is None else registry


def set_hook_registry(registry: HookRegistry | None) -> None:
    """Override the registry for the current context; None restores the default."""
    _current_registry.set(registry)
