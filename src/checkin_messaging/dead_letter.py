"""DeadLetterHandler: notified of messages that exhausted their retry budget."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

    from .message import Message
    from .publisher import Publisher

logger = logging.getLogger("checkin_messaging.dead_letter")

REASON_HEADER = "x-dead-letter-reason"
SOURCE_QUEUE_HEADER = "x-dead-letter-queue"


class DeadLetterHandler:
    """Receives messages the consumer is about to drop.

    The consumer still rejects the delivery without requeue afterwards; this
    hook only adds a side channel (a parking queue, an audit store, ...).
    Typical use is :meth:`publishing_to`, which republishes the message.
    """

    def __init__(
        self,
        on_dead_letter: (
            Callable[[Message, str, BaseException | None], Coroutine[Any, Any, None]]
            | None
        ) = None,
    ) -> None:
        """Configure dead-letter handling.

        Args:
            on_dead_letter: Async callable (message, reason, exception) -> None.
                If None, route() only logs.
        """
        self._on_dead_letter = on_dead_letter

    @classmethod
    def publishing_to(
        cls, publisher: Publisher, exchange: str, routing_key: str
    ) -> DeadLetterHandler:
        """Build a handler that republishes dropped messages to *exchange*."""

        async def _republish(
            message: Message, reason: str, _exception: BaseException | None
        ) -> None:
            message.set_header(REASON_HEADER, reason)
            await publisher.publish(exchange, routing_key, message)

        return cls(_republish)

    async def route(
        self,
        message: Message,
        reason: str,
        exception: BaseException | None = None,
        *,
        queue_name: str | None = None,
    ) -> None:
        """Hand *message* to the dead-letter callback."""
        logger.warning(
            "Dead-lettering message %s (%s): %s", message.id, message.type, reason
        )
        if queue_name is not None:
            message.set_header(SOURCE_QUEUE_HEADER, queue_name)
        if self._on_dead_letter is not None:
            await self._on_dead_letter(message, reason, exception)
