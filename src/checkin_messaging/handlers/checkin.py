"""CheckinEventHandler: reacts to check-in events by invalidating caches."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, ClassVar

from pydantic import ValidationError

from ..exceptions import InvalidMessageError, MessageProcessingError
from ..message import MessageType
from ..payloads import CheckinEventPayload
from .base import MessageHandler
from .keys import KeyBuilder

if TYPE_CHECKING:
    from ..message import Message
    from ..ports.cache import ICacheInvalidator

logger = logging.getLogger("checkin_messaging.handlers.checkin")

DEFAULT_CACHE = "default"


class CheckinEventHandler(MessageHandler):
    """Handles ``checkin.performed``, ``checkin.validated`` and ``checkin.invalid``.

    Cache invalidation is best effort: failures are logged and never fail
    the message.
    """

    message_types: ClassVar[frozenset[str]] = frozenset(
        {
            MessageType.CHECKIN_PERFORMED,
            MessageType.CHECKIN_VALIDATED,
            MessageType.CHECKIN_INVALID,
        }
    )

    def __init__(
        self,
        cache: ICacheInvalidator | None = None,
        key_builder: KeyBuilder | None = None,
    ) -> None:
        self._cache = cache
        self._keys = key_builder or KeyBuilder()

    async def handle(self, message: Message) -> None:
        logger.info("Processing checkin event %s (%s)", message.id, message.type)
        if message.type == MessageType.CHECKIN_PERFORMED:
            await self._on_performed(self._payload(message))
        elif message.type == MessageType.CHECKIN_VALIDATED:
            await self._on_validated(self._payload(message))
        elif message.type == MessageType.CHECKIN_INVALID:
            self._on_invalid(self._payload(message))
        else:
            raise MessageProcessingError(
                f"unsupported message type: {message.type}", message_id=message.id
            )

    @staticmethod
    def _payload(message: Message) -> CheckinEventPayload:
        try:
            return CheckinEventPayload.model_validate(message.body)
        except ValidationError as e:
            raise InvalidMessageError(
                f"failed to parse checkin payload of message {message.id}: {e}"
            ) from e

    async def _on_performed(self, payload: CheckinEventPayload) -> None:
        logger.info(
            "Checkin performed: checkin=%s employee=%s event=%s method=%s valid=%s",
            payload.checkin_id,
            payload.employee_id,
            payload.event_id,
            payload.method,
            payload.is_valid,
        )
        await self._invalidate(payload.checkin_id, self.related_patterns(payload))

    async def _on_validated(self, payload: CheckinEventPayload) -> None:
        logger.info(
            "Checkin validated: checkin=%s employee=%s valid=%s",
            payload.checkin_id,
            payload.employee_id,
            payload.is_valid,
        )
        pattern = self._keys.stats_key(payload.tenant_id, "checkin") + "*"
        await self._invalidate(payload.checkin_id, [pattern])

    def _on_invalid(self, payload: CheckinEventPayload) -> None:
        logger.warning(
            "Invalid checkin: checkin=%s employee=%s event=%s method=%s",
            payload.checkin_id,
            payload.employee_id,
            payload.event_id,
            payload.method,
        )

    def related_patterns(self, payload: CheckinEventPayload) -> list[str]:
        """Cache key patterns touched by a new check-in."""
        tenant = payload.tenant_id
        keys = self._keys
        return [
            keys.checkin_key(tenant, payload.checkin_id),
            keys.build_key_with_tenant(
                tenant, "list", "checkin", "employee", payload.employee_id
            )
            + "*",
            keys.build_key_with_tenant(
                tenant, "list", "checkin", "event", payload.event_id
            )
            + "*",
            keys.stats_key(tenant, "checkin") + "*",
            keys.build_key_with_tenant(tenant, "recent", "checkin") + "*",
        ]

    async def _invalidate(self, checkin_id: str, patterns: list[str]) -> None:
        if self._cache is None:
            return
        for pattern in patterns:
            try:
                await self._cache.invalidate_pattern(DEFAULT_CACHE, pattern)
            except Exception as e:  # noqa: BLE001
                logger.warning(
                    "Failed to invalidate cache pattern %s for checkin %s: %s",
                    pattern,
                    checkin_id,
                    e,
                )
                return
        logger.debug(
            "Invalidated %d cache patterns for checkin %s", len(patterns), checkin_id
        )
