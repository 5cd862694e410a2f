"""Messaging-specific exceptions for checkin-messaging."""

from __future__ import annotations


class MessagingError(Exception):
    """Base class for all messaging-related infrastructure errors."""


class MessagingConnectionError(MessagingError):
    """Raised when connectivity to the message broker fails."""


class NotConnectedError(MessagingConnectionError):
    """Raised when a broker operation is attempted while disconnected."""

    def __init__(self, message: str = "rabbitmq client not connected") -> None:
        super().__init__(message)


class PublishFailedError(MessagingError):
    """Raised when a message could not be published.

    ``last_error`` is the error of the final attempt (also the ``__cause__``
    when raised by :class:`~checkin_messaging.publisher.Publisher`).
    """

    def __init__(
        self,
        message: str,
        *,
        attempts: int = 1,
        last_error: BaseException | None = None,
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message)


class PublishTimeoutError(PublishFailedError):
    """Raised when the overall publish budget elapsed before any attempt succeeded."""


class ConsumeFailedError(MessagingError):
    """Raised when a delivery stream cannot be opened or closes unexpectedly."""


class MessageProcessingError(MessagingError):
    """Raised when a handler fails to process a message."""

    def __init__(self, message: str, message_id: str | None = None) -> None:
        self.message_id = message_id
        super().__init__(message)


class InvalidMessageError(MessagingError):
    """Raised when an envelope cannot be serialized or parsed."""


class MaxRetriesExceededError(MessageProcessingError):
    """Raised (and logged) when a message exhausted its redelivery budget."""

    def __init__(self, message_id: str, retries: int) -> None:
        self.retries = retries
        super().__init__(
            f"maximum retries exceeded for message {message_id} ({retries})",
            message_id=message_id,
        )


class ConsumerStateError(MessagingError):
    """Raised on an illegal consumer lifecycle transition."""


class HandlerRegistrationError(MessagingError):
    """Raised when registered handler types do not match the known type table."""
