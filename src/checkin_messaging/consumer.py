"""Consumer: multi-worker delivery loop with bounded redelivery."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from typing import TYPE_CHECKING

from .connection import BROKER_ERRORS
from .correlation import correlation_scope, get_correlation_id
from .exceptions import (
    ConsumeFailedError,
    ConsumerStateError,
    InvalidMessageError,
    MaxRetriesExceededError,
    MessageProcessingError,
    MessagingError,
)
from .instrumentation import HANDLE_OPERATION, get_hook_registry
from .redelivery import RedeliveryTracker
from .registry import HandlerRegistry
from .serialization import MessageSerializer

if TYPE_CHECKING:
    from aio_pika.abc import AbstractIncomingMessage

    from .config import ConsumerConfig
    from .connection import ConnectionManager
    from .dead_letter import DeadLetterHandler
    from .message import Message
    from .ports.handler import IMessageHandler

logger = logging.getLogger("checkin_messaging.consumer")


class ConsumerState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class Consumer:
    """Runs ``concurrent_consumers`` workers against one queue.

    Each worker opens its own delivery stream (consumer tag
    ``<consumer_tag>-<n>``) and processes deliveries one at a time:
    parse, look up the handler for ``message.type``, invoke it under
    ``processing_timeout``, then ack, requeue for retry, or drop.
    A worker whose stream closes (e.g. on connection loss) re-opens it after
    ``retry_delay`` until the consumer is stopped, so consumption resumes
    after a reconnect without calling ``start()`` again.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        config: ConsumerConfig,
        *,
        registry: HandlerRegistry | None = None,
        serializer: MessageSerializer | None = None,
        dead_letter: DeadLetterHandler | None = None,
        redeliveries: RedeliveryTracker | None = None,
    ) -> None:
        """Configure consumer.

        Args:
            connection: Shared connection manager.
            config: Consumer settings.
            registry: Handler registry; default a fresh HandlerRegistry().
            serializer: For parsing deliveries; default MessageSerializer().
            dead_letter: If set, notified before a message is dropped.
            redeliveries: Retry counter store; default RedeliveryTracker().
        """
        self._connection = connection
        self._config = config
        self._registry = registry if registry is not None else HandlerRegistry()
        self._serializer = serializer or MessageSerializer()
        self._dead_letter = dead_letter
        self._redeliveries = (
            redeliveries if redeliveries is not None else RedeliveryTracker()
        )
        self._state = ConsumerState.STOPPED
        self._stopping: asyncio.Event | None = None
        self._workers: list[asyncio.Task[None]] = []
        self._supervisor: asyncio.Task[None] | None = None

    @property
    def config(self) -> ConsumerConfig:
        return self._config

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def state(self) -> ConsumerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ConsumerState.RUNNING

    # ── Handlers ─────────────────────────────────────────────────

    def register_handler(self, message_type: str, handler: IMessageHandler) -> None:
        self._registry.register(message_type, handler)

    def unregister_handler(self, message_type: str) -> None:
        self._registry.unregister(message_type)

    @property
    def handler_count(self) -> int:
        return len(self._registry)

    def handler_names(self) -> list[str]:
        return self._registry.names()

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        """Apply QoS and spawn the workers.

        Raises:
            ConsumerStateError: the consumer is not stopped.
            MessagingError: QoS could not be applied (e.g. not connected).
        """
        if self._state is not ConsumerState.STOPPED:
            raise ConsumerStateError("consumer is already running")
        self._state = ConsumerState.STARTING
        try:
            await self._connection.set_qos(
                self._config.prefetch_count, self._config.prefetch_size
            )
        except MessagingError:
            self._state = ConsumerState.STOPPED
            raise

        self._stopping = asyncio.Event()
        self._workers = [
            asyncio.create_task(
                self._worker(index, self._stopping),
                name=f"{self._config.consumer_tag}-{index}",
            )
            for index in range(self._config.concurrent_consumers)
        ]
        self._supervisor = asyncio.create_task(self._supervise(self._workers))
        self._state = ConsumerState.RUNNING
        logger.info(
            "Consumer started on queue %s with %d workers",
            self._config.queue_name,
            self._config.concurrent_consumers,
        )

    async def stop(self, *, wait: bool = True) -> None:
        """Signal workers to finish their current delivery and exit.

        In-flight handlers are not interrupted; with ``wait=True`` this
        returns once every worker has exited.
        """
        if self._state is not ConsumerState.RUNNING or self._stopping is None:
            raise ConsumerStateError("consumer is not running")
        self._state = ConsumerState.STOPPING
        logger.info("Stopping consumer on queue %s", self._config.queue_name)
        self._stopping.set()
        if wait:
            await self.wait_stopped()

    async def wait_stopped(self) -> None:
        """Block until every worker has exited."""
        if self._supervisor is not None:
            await asyncio.shield(self._supervisor)

    async def health_check(self) -> bool:
        """Return True if running and the connection is healthy."""
        return self.is_running and await self._connection.health_check()

    async def _supervise(self, workers: list[asyncio.Task[None]]) -> None:
        results = await asyncio.gather(*workers, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error("Consumer worker crashed: %s", result, exc_info=result)
        self._workers = []
        self._state = ConsumerState.STOPPED
        logger.info("All consumer workers stopped")

    # ── Worker loop ──────────────────────────────────────────────

    async def _worker(self, index: int, stopping: asyncio.Event) -> None:
        tag = f"{self._config.consumer_tag}-{index}"
        logger.info("Consumer worker %d started (tag %s)", index, tag)
        while not stopping.is_set():
            try:
                await self._consume_stream(tag, stopping)
            except MessagingError as e:
                logger.error("Consumer worker %d: %s", index, e)
            except Exception:  # noqa: BLE001
                logger.exception("Consumer worker %d failed unexpectedly", index)
            if stopping.is_set():
                break
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(
                    stopping.wait(), timeout=self._config.retry_delay
                )
        logger.info("Consumer worker %d stopped", index)

    async def _consume_stream(self, tag: str, stopping: asyncio.Event) -> None:
        stream = await self._connection.consume(
            self._config.queue_name, tag, self._config.auto_ack
        )
        stop_wait = asyncio.ensure_future(stopping.wait())
        try:
            while True:
                receive = asyncio.ensure_future(stream.receive())
                done, _ = await asyncio.wait(
                    {receive, stop_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if receive not in done:
                    receive.cancel()
                    return
                delivery = receive.result()
                if delivery is None:
                    raise ConsumeFailedError(
                        f"delivery stream {tag} closed: {stream.close_reason}"
                    )
                await self._process_delivery(delivery)
                if stopping.is_set():
                    return
        finally:
            stop_wait.cancel()
            await stream.close()

    # ── Per-delivery processing ──────────────────────────────────

    async def _process_delivery(self, delivery: AbstractIncomingMessage) -> None:
        try:
            message = self._serializer.from_delivery(delivery)
        except InvalidMessageError as e:
            logger.error(
                "Dropping unparsable delivery %s: %s", delivery.delivery_tag, e
            )
            await self._reject(delivery, requeue=False)
            return

        if delivery.redelivered:
            self._redeliveries.restore(message)

        handler = self._registry.get(message.type)
        if handler is None:
            logger.warning(
                "No handler registered for message type %s (message %s)",
                message.type,
                message.id,
            )
            await self._reject(delivery, requeue=False)
            return

        try:
            await self._invoke(handler, message)
        except Exception as e:  # noqa: BLE001
            await self._on_failure(delivery, message, e)
            return

        self._redeliveries.forget(message.id)
        await self._ack(delivery)
        logger.debug(
            "Message %s (%s) processed by %s", message.id, message.type, handler.name
        )

    async def _invoke(self, handler: IMessageHandler, message: Message) -> None:
        timeout = self._config.processing_timeout

        async def call() -> None:
            try:
                await asyncio.wait_for(handler.handle(message), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise MessageProcessingError(
                    f"handler {handler.name} timed out after {timeout}s",
                    message_id=message.id,
                ) from e

        attributes = {
            "message_id": message.id,
            "message_type": message.type,
            "handler": handler.name,
            "retry": message.retry,
            "queue": self._config.queue_name,
        }
        with correlation_scope(message.get_correlation_id() or get_correlation_id()):
            await get_hook_registry().execute_all(HANDLE_OPERATION, attributes, call)

    async def _on_failure(
        self,
        delivery: AbstractIncomingMessage,
        message: Message,
        error: Exception,
    ) -> None:
        logger.error(
            "Failed to process message %s (%s), retry %d/%d: %s",
            message.id,
            message.type,
            message.retry,
            self._config.max_retries,
            error,
        )
        if self._config.auto_ack:
            return

        if message.retry < self._config.max_retries:
            message.increment_retry()
            self._redeliveries.record(message.id, message.retry)
            if self._config.requeue_delay > 0:
                await asyncio.sleep(self._config.requeue_delay)
            await self._reject(delivery, requeue=True)
            return

        self._redeliveries.forget(message.id)
        exhausted = MaxRetriesExceededError(message.id, message.retry)
        logger.error("%s; dropping message (%s)", exhausted, message.type)
        if self._dead_letter is not None:
            try:
                await self._dead_letter.route(
                    message,
                    str(error),
                    error,
                    queue_name=self._config.queue_name,
                )
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Dead-letter handler failed for message %s", message.id
                )
        await self._reject(delivery, requeue=False)

    async def _ack(self, delivery: AbstractIncomingMessage) -> None:
        if self._config.auto_ack:
            return
        try:
            await delivery.ack()
        except BROKER_ERRORS as e:
            logger.error("Failed to ack delivery %s: %s", delivery.delivery_tag, e)

    async def _reject(
        self, delivery: AbstractIncomingMessage, *, requeue: bool
    ) -> None:
        if self._config.auto_ack:
            return
        try:
            await delivery.reject(requeue=requeue)
        except BROKER_ERRORS as e:
            logger.error(
                "Failed to reject delivery %s (requeue=%s): %s",
                delivery.delivery_tag,
                requeue,
                e,
            )
