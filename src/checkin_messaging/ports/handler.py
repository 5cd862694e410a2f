from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..message import Message


@runtime_checkable
class IMessageHandler(Protocol):
    """
    Port for application code that processes one message type.

    ``handle`` raising marks the delivery as failed; the consumer then
    requeues it or drops it once the retry budget is spent. Handlers must
    tolerate seeing the same ``Message.id`` more than once.
    """

    async def handle(self, message: Message) -> None:
        """Process *message*; raise to request a retry."""
        ...

    def can_handle(self, message_type: str) -> bool:
        """Advisory: whether this handler understands *message_type*."""
        ...

    @property
    def name(self) -> str:
        """Human-readable handler name used in logs and listings."""
        ...
