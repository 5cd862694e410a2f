"""checkin-messaging: RabbitMQ reliability layer for the check-in service."""

from .config import ConnectionConfig, ConsumerConfig, PublisherConfig
from .connection import ConnectionManager, ConnectionState, DeliveryStream
from .consumer import Consumer, ConsumerState
from .dead_letter import DeadLetterHandler
from .exceptions import (
    ConsumeFailedError,
    ConsumerStateError,
    HandlerRegistrationError,
    InvalidMessageError,
    MaxRetriesExceededError,
    MessageProcessingError,
    MessagingConnectionError,
    MessagingError,
    NotConnectedError,
    PublishFailedError,
    PublishTimeoutError,
)
from .idempotency import IdempotencyFilter, IdempotentHandler
from .message import KNOWN_MESSAGE_TYPES, Message, MessageType
from .publisher import Publisher
from .redelivery import RedeliveryTracker
from .registry import HandlerRegistry
from .retry import RetryPolicy
from .serialization import MessageSerializer

__all__ = [
    "KNOWN_MESSAGE_TYPES",
    "ConnectionConfig",
    "ConnectionManager",
    "ConnectionState",
    "ConsumeFailedError",
    "Consumer",
    "ConsumerConfig",
    "ConsumerState",
    "ConsumerStateError",
    "DeadLetterHandler",
    "DeliveryStream",
    "HandlerRegistrationError",
    "HandlerRegistry",
    "IdempotencyFilter",
    "IdempotentHandler",
    "InvalidMessageError",
    "MaxRetriesExceededError",
    "Message",
    "MessageProcessingError",
    "MessageSerializer",
    "MessageType",
    "MessagingConnectionError",
    "MessagingError",
    "NotConnectedError",
    "PublishFailedError",
    "PublishTimeoutError",
    "Publisher",
    "PublisherConfig",
    "RedeliveryTracker",
    "RetryPolicy",
]
