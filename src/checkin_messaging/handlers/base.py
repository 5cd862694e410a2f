"""MessageHandler: convenience base for IMessageHandler implementations."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from ..message import Message


class MessageHandler(ABC):
    """Base class for handlers.

    Subclasses list the types they understand in ``message_types`` and
    implement ``handle``. ``name`` defaults to the class name.
    """

    message_types: ClassVar[frozenset[str]] = frozenset()

    @abstractmethod
    async def handle(self, message: Message) -> None: ...

    def can_handle(self, message_type: str) -> bool:
        return message_type in self.message_types

    @property
    def name(self) -> str:
        return type(self).__name__
