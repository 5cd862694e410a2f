"""MessageSerializer: JSON envelope codec and AMQP property/header mapping."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import aio_pika

from .exceptions import InvalidMessageError
from .message import Message

if TYPE_CHECKING:
    from aio_pika.abc import AbstractIncomingMessage

_AMQP_SCALARS = (str, bytes, bool, int, float, Decimal, datetime)


def _to_amqp_value(value: Any) -> Any:
    """Coerce a header value into something the AMQP field table can encode."""
    if value is None or isinstance(value, _AMQP_SCALARS):
        return value
    if isinstance(value, dict):
        return {str(k): _to_amqp_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_amqp_value(v) for v in value]
    return str(value)


def _from_amqp_value(value: Any) -> Any:
    """Decode AMQP header values (bytes arrive for long strings)."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, dict):
        return {str(k): _from_amqp_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_amqp_value(v) for v in value]
    return value


class MessageSerializer:
    """Serialize/deserialize Message to/from the JSON wire format.

    The full envelope travels as the AMQP body; transport headers found on a
    delivery are merged over the envelope headers when parsing.
    """

    content_type = "application/json"

    def serialize(self, message: Message) -> bytes:
        """Encode message to JSON bytes."""
        return message.to_json()

    def deserialize(self, raw: bytes | str) -> Message:
        """Decode JSON bytes to a Message."""
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = bytes(raw).decode("utf-8")
            except UnicodeDecodeError as e:
                raise InvalidMessageError(f"message body is not UTF-8: {e}") from e
        return Message.from_json(raw)

    def from_delivery(self, delivery: AbstractIncomingMessage) -> Message:
        """Parse a raw delivery; transport headers win on key collision."""
        message = self.deserialize(delivery.body)
        for key, value in (delivery.headers or {}).items():
            message.headers[key] = _from_amqp_value(value)
        return message

    def to_amqp(self, message: Message) -> aio_pika.Message:
        """Build the persistent AMQP message published for *message*."""
        now = datetime.now(timezone.utc)
        headers = {key: _to_amqp_value(value) for key, value in message.headers.items()}
        headers["published_at"] = now.isoformat().replace("+00:00", "Z")
        headers["message_id"] = message.id
        headers["message_type"] = message.type
        return aio_pika.Message(
            body=self.serialize(message),
            content_type=self.content_type,
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            message_id=message.id,
            type=message.type,
            timestamp=now,
            headers=headers,
        )
