"""Publisher: bounded-retry publishing with typed convenience wrappers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from .config import PublisherConfig
from .correlation import get_correlation_id
from .exceptions import (
    InvalidMessageError,
    MessagingError,
    PublishFailedError,
    PublishTimeoutError,
)
from .instrumentation import PUBLISH_OPERATION, get_hook_registry
from .message import Message
from .retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .connection import ConnectionManager
    from .payloads import (
        CheckinEventPayload,
        CheckoutEventPayload,
        EmployeeEventPayload,
        EventEventPayload,
        EventPayload,
        NotificationEventPayload,
        SystemEventPayload,
        TenantEventPayload,
        UserEventPayload,
    )

logger = logging.getLogger("checkin_messaging.publisher")

DELAY_HEADER = "x-delay"


class Publisher:
    """Publishes messages through a ConnectionManager.

    Each ``publish`` makes up to ``max_retries + 1`` attempts,
    ``retry_delay`` seconds apart, all within ``default_timeout`` seconds.
    Delivery is at-least-once: an attempt that timed out client-side may
    still have reached the broker.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        config: PublisherConfig | None = None,
    ) -> None:
        """Configure publisher.

        Args:
            connection: Shared connection manager.
            config: Publisher settings; default PublisherConfig().
        """
        self._connection = connection
        self._config = config or PublisherConfig()
        self._retry_policy = RetryPolicy(
            max_retries=self._config.max_retries, delay=self._config.retry_delay
        )

    @property
    def config(self) -> PublisherConfig:
        return self._config

    async def publish(self, exchange: str, routing_key: str, message: Message) -> None:
        """Publish *message*; an empty *exchange* falls back to ``default_exchange``.

        Raises:
            PublishFailedError: every attempt failed; ``last_error`` holds the
                final attempt's error.
            PublishTimeoutError: ``default_timeout`` elapsed first.
            InvalidMessageError: the envelope cannot be encoded (not retried).
        """
        exchange = exchange or self._config.default_exchange
        if message.get_correlation_id() is None:
            correlation_id = get_correlation_id()
            if correlation_id:
                message.set_correlation_id(correlation_id)

        attributes = {
            "message_id": message.id,
            "message_type": message.type,
            "exchange": exchange,
            "routing_key": routing_key,
        }
        await get_hook_registry().execute_all(
            PUBLISH_OPERATION,
            attributes,
            lambda: self._publish_with_retry(exchange, routing_key, message),
        )

    async def _publish_with_retry(
        self, exchange: str, routing_key: str, message: Message
    ) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.default_timeout
        attempts = self._retry_policy.attempts
        last_error: BaseException | None = None

        for attempt in range(1, attempts + 1):
            if attempt > 1:
                logger.warning(
                    "Retrying publication of message %s to %s/%s (attempt %d)",
                    message.id,
                    exchange or "<default>",
                    routing_key,
                    attempt,
                )
                pause = self._retry_policy.delay_for(attempt - 1)
                await asyncio.sleep(max(0.0, min(pause, deadline - loop.time())))

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise PublishTimeoutError(
                    f"publish of message {message.id} timed out "
                    f"after {attempt - 1} attempts",
                    attempts=attempt - 1,
                    last_error=last_error,
                ) from last_error

            try:
                await asyncio.wait_for(
                    self._connection.publish(exchange, routing_key, message),
                    timeout=remaining,
                )
            except InvalidMessageError:
                raise
            except (MessagingError, asyncio.TimeoutError) as e:
                last_error = e
                logger.error(
                    "Failed to publish message %s to %s/%s (attempt %d): %s",
                    message.id,
                    exchange or "<default>",
                    routing_key,
                    attempt,
                    e,
                )
                continue

            if attempt > 1:
                logger.info(
                    "Message %s published after %d attempts", message.id, attempt
                )
            return

        if loop.time() >= deadline:
            raise PublishTimeoutError(
                f"publish of message {message.id} timed out after {attempts} attempts",
                attempts=attempts,
                last_error=last_error,
            ) from last_error
        raise PublishFailedError(
            f"failed to publish message after {attempts} attempts: {last_error}",
            attempts=attempts,
            last_error=last_error,
        ) from last_error

    async def publish_to_default(self, routing_key: str, message: Message) -> None:
        await self.publish(self._config.default_exchange, routing_key, message)

    # ── Typed event wrappers ─────────────────────────────────────

    async def _publish_event(
        self,
        category: str,
        event_type: str,
        payload: EventPayload,
        tenant_id: str | None = None,
    ) -> Message:
        message = Message.create(event_type, payload.to_body())
        if tenant_id:
            message.set_tenant_id(tenant_id)
        await self.publish_to_default(f"{category}.events", message)
        return message

    async def publish_user_event(
        self, event_type: str, payload: UserEventPayload
    ) -> Message:
        return await self._publish_event("user", event_type, payload, payload.tenant_id)

    async def publish_tenant_event(
        self, event_type: str, payload: TenantEventPayload
    ) -> Message:
        return await self._publish_event("tenant", event_type, payload)

    async def publish_event_event(
        self, event_type: str, payload: EventEventPayload
    ) -> Message:
        return await self._publish_event(
            "event", event_type, payload, payload.tenant_id
        )

    async def publish_employee_event(
        self, event_type: str, payload: EmployeeEventPayload
    ) -> Message:
        return await self._publish_event(
            "employee", event_type, payload, payload.tenant_id
        )

    async def publish_checkin_event(
        self, event_type: str, payload: CheckinEventPayload
    ) -> Message:
        return await self._publish_event(
            "checkin", event_type, payload, payload.tenant_id
        )

    async def publish_checkout_event(
        self, event_type: str, payload: CheckoutEventPayload
    ) -> Message:
        return await self._publish_event(
            "checkout", event_type, payload, payload.tenant_id
        )

    async def publish_system_event(
        self, event_type: str, payload: SystemEventPayload
    ) -> Message:
        return await self._publish_event("system", event_type, payload)

    async def publish_notification_event(
        self, event_type: str, payload: NotificationEventPayload
    ) -> Message:
        return await self._publish_event(
            "notification", event_type, payload, payload.tenant_id
        )

    # ── Delayed and batch ────────────────────────────────────────

    async def publish_delayed(
        self, exchange: str, routing_key: str, message: Message, delay: float
    ) -> None:
        """Publish with an ``x-delay`` header (milliseconds).

        Requires a delayed-message exchange on the broker; a regular exchange
        ignores the header and delivers immediately.
        """
        message.set_header(DELAY_HEADER, int(delay * 1000))
        await self.publish(exchange, routing_key, message)

    async def publish_batch(
        self,
        exchange: str,
        messages: Mapping[str, Message] | Iterable[tuple[str, Message]],
    ) -> None:
        """Publish every (routing_key, message) pair, then report failures at once."""
        pairs = list(messages.items() if isinstance(messages, Mapping) else messages)
        if not pairs:
            return
        failures: list[MessagingError] = []
        for routing_key, message in pairs:
            try:
                await self.publish(exchange, routing_key, message)
            except MessagingError as e:
                logger.error(
                    "Failed to publish message %s in batch (routing key %s): %s",
                    message.id,
                    routing_key,
                    e,
                )
                failures.append(e)
        if failures:
            raise PublishFailedError(
                f"failed to publish {len(failures)} of {len(pairs)} messages in batch",
                attempts=len(pairs),
                last_error=failures[-1],
            ) from failures[-1]
        logger.info("Published batch of %d messages", len(pairs))

    async def health_check(self) -> bool:
        """Return True if the connection is healthy."""
        return await self._connection.health_check()
