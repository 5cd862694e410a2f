"""Handler Registry: maps message types to their single handler."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from .exceptions import HandlerRegistrationError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .ports.handler import IMessageHandler

logger = logging.getLogger("checkin_messaging.registry")


class HandlerRegistry:
    """Thread-safe store of one handler per message type.

    Registering a second handler for the same type replaces the first
    (last write wins). Lookups take the same lock, so registration may
    happen while a consumer is dispatching.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, IMessageHandler] = {}
        self._lock = threading.RLock()

    # ── Registration ─────────────────────────────────────────────

    def register(self, message_type: str, handler: IMessageHandler) -> None:
        with self._lock:
            previous = self._handlers.get(message_type)
            self._handlers[message_type] = handler
        if previous is not None and previous is not handler:
            logger.warning(
                "Replaced handler for %s: %s -> %s",
                message_type,
                previous.name,
                handler.name,
            )
        else:
            logger.info("Registered handler %s -> %s", message_type, handler.name)

    def unregister(self, message_type: str) -> IMessageHandler | None:
        """Remove and return the handler for *message_type*, if any."""
        with self._lock:
            handler = self._handlers.pop(message_type, None)
        if handler is not None:
            logger.info("Unregistered handler for %s", message_type)
        return handler

    # ── Lookup ───────────────────────────────────────────────────

    def get(self, message_type: str) -> IMessageHandler | None:
        with self._lock:
            return self._handlers.get(message_type)

    def __contains__(self, message_type: object) -> bool:
        with self._lock:
            return message_type in self._handlers

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)

    def types(self) -> list[str]:
        with self._lock:
            return sorted(self._handlers)

    def names(self) -> list[str]:
        """Return ``"<type> -> <handler name>"`` entries, sorted by type."""
        with self._lock:
            items = sorted(self._handlers.items())
        return [f"{message_type} -> {handler.name}" for message_type, handler in items]

    # ── Validation ───────────────────────────────────────────────

    def validate(self, known_types: Iterable[str]) -> None:
        """Raise HandlerRegistrationError if a registered type is not known."""
        known = set(known_types)
        unknown = [t for t in self.types() if t not in known]
        if unknown:
            msg = f"Handlers registered for unknown message types: {', '.join(unknown)}"
            raise HandlerRegistrationError(msg)
