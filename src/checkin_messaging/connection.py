"""RabbitMQ connection manager with a bounded auto-reconnect watcher."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import weakref
from enum import Enum
from typing import TYPE_CHECKING, Any

import aio_pika
from aio_pika.exceptions import AMQPError, ChannelInvalidStateError

from .config import ConnectionConfig
from .exceptions import (
    ConsumeFailedError,
    MessagingConnectionError,
    MessagingError,
    NotConnectedError,
    PublishFailedError,
)
from .locking import ReadWriteLock
from .retry import RetryPolicy
from .serialization import MessageSerializer

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from aio_pika.abc import (
        AbstractChannel,
        AbstractConnection,
        AbstractExchange,
        AbstractIncomingMessage,
        AbstractQueue,
    )

    from .message import Message

    Connector = Callable[..., Awaitable[AbstractConnection]]

logger = logging.getLogger("checkin_messaging.connection")

BROKER_ERRORS: tuple[type[BaseException], ...] = (
    AMQPError,
    ChannelInvalidStateError,
    ConnectionError,
    OSError,
    asyncio.TimeoutError,
)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class DeliveryStream:
    """Buffered stream of raw deliveries for one broker consumer.

    ``receive()`` returns ``None`` once the stream is closed, either by the
    owner or because the underlying channel went away.
    """

    def __init__(self, queue_name: str, consumer_tag: str, *, auto_ack: bool) -> None:
        self.queue_name = queue_name
        self.consumer_tag = consumer_tag
        self.auto_ack = auto_ack
        self.close_reason: str | None = None
        self._buffer: asyncio.Queue[AbstractIncomingMessage | None] = asyncio.Queue()
        self._queue: AbstractQueue | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def attach(self, queue: AbstractQueue) -> None:
        self._queue = queue

    async def push(self, delivery: AbstractIncomingMessage) -> None:
        """Consume callback handed to the broker."""
        if self._closed:
            if not self.auto_ack:
                with contextlib.suppress(*BROKER_ERRORS):
                    await delivery.reject(requeue=True)
            return
        self._buffer.put_nowait(delivery)

    def terminate(self, reason: str) -> None:
        """Mark the stream closed without touching the broker."""
        if self._closed:
            return
        self._closed = True
        self.close_reason = reason
        self._buffer.put_nowait(None)

    async def receive(self) -> AbstractIncomingMessage | None:
        delivery = await self._buffer.get()
        if delivery is None:
            # keep the sentinel for later callers
            self._buffer.put_nowait(None)
        return delivery

    def __aiter__(self) -> DeliveryStream:
        return self

    async def __anext__(self) -> AbstractIncomingMessage:
        delivery = await self.receive()
        if delivery is None:
            raise StopAsyncIteration
        return delivery

    async def close(self) -> None:
        """Cancel the broker consumer and hand buffered deliveries back."""
        if self._closed:
            return
        self.terminate("closed by owner")
        if self._queue is not None:
            with contextlib.suppress(*BROKER_ERRORS):
                await self._queue.cancel(self.consumer_tag)
        pending: list[AbstractIncomingMessage] = []
        while not self._buffer.empty():
            delivery = self._buffer.get_nowait()
            if delivery is not None:
                pending.append(delivery)
        self._buffer.put_nowait(None)
        if self.auto_ack:
            return
        for delivery in pending:
            with contextlib.suppress(*BROKER_ERRORS):
                await delivery.reject(requeue=True)


class ConnectionManager:
    """Owns one AMQP connection and one channel and keeps them alive.

    Broker primitives run under a shared read lock and fail fast with
    NotConnectedError while the pair is down; (re)connecting takes the
    write lock. An unexpected close of the connection or the channel wakes a
    watcher task that closes open delivery streams and re-dials up to
    ``config.max_retries`` times, ``config.retry_delay`` seconds apart.
    After ``close()`` nothing reconnects.
    """

    def __init__(
        self,
        config: ConnectionConfig | None = None,
        *,
        connector: Connector | None = None,
        serializer: MessageSerializer | None = None,
    ) -> None:
        """Configure the manager.

        Args:
            config: Connection settings; default reads ``RABBITMQ_*`` env vars.
            connector: Async dial function; default ``aio_pika.connect``.
            serializer: Codec used by ``publish``; default MessageSerializer().
        """
        self._config = config or ConnectionConfig()
        self._connector: Connector = connector or aio_pika.connect
        self._serializer = serializer or MessageSerializer()
        self._reconnect_policy = RetryPolicy(
            max_retries=self._config.max_retries, delay=self._config.retry_delay
        )
        self._lock = ReadWriteLock()
        self._connection: AbstractConnection | None = None
        self._channel: AbstractChannel | None = None
        self._state = ConnectionState.DISCONNECTED
        self._closed = False
        self._qos: tuple[int, int] | None = None
        self._watcher: asyncio.Task[None] | None = None
        self._streams: weakref.WeakSet[DeliveryStream] = weakref.WeakSet()

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        """True while both the connection and the channel are open."""
        return (
            self._connection is not None
            and not self._connection.is_closed
            and self._channel is not None
            and not self._channel.is_closed
        )

    @property
    def channel(self) -> AbstractChannel:
        """Return the live channel for advanced operations; raises if down."""
        return self._require_channel()

    async def health_check(self) -> bool:
        return self.is_connected

    # ── Lifecycle ────────────────────────────────────────────────

    async def connect(self) -> None:
        """Dial the broker and open a channel. Idempotent if already connected."""
        async with self._lock.write():
            await self._connect_locked()

    async def _connect_locked(self) -> None:
        if self._closed:
            raise MessagingConnectionError("connection manager is closed")
        if self.is_connected:
            return
        if self._state is not ConnectionState.RECONNECTING:
            self._state = ConnectionState.CONNECTING

        try:
            connection = await self._connector(
                self._config.connection_url,
                timeout=self._config.connection_timeout,
            )
        except BROKER_ERRORS as e:
            self._mark_failed()
            raise MessagingConnectionError(
                f"failed to connect to RabbitMQ at {self._config.safe_url}: {e}"
            ) from e

        try:
            channel = await connection.channel(
                publisher_confirms=self._config.publisher_confirms
            )
            if self._qos is not None:
                prefetch_count, prefetch_size = self._qos
                await channel.set_qos(
                    prefetch_count=prefetch_count, prefetch_size=prefetch_size
                )
        except BROKER_ERRORS as e:
            with contextlib.suppress(*BROKER_ERRORS):
                await connection.close()
            self._mark_failed()
            raise MessagingConnectionError(f"failed to open channel: {e}") from e
        except BaseException:
            # cancelled mid-handshake (e.g. by close()); do not leak the socket
            with contextlib.suppress(*BROKER_ERRORS):
                await asyncio.shield(connection.close())
            self._mark_failed()
            raise

        self._connection = connection
        self._channel = channel
        self._state = ConnectionState.CONNECTED

        lost: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

        def _on_close(*args: Any) -> None:
            if not lost.done():
                lost.set_result(args[-1] if len(args) > 1 else None)

        connection.close_callbacks.add(_on_close)
        channel.close_callbacks.add(_on_close)
        self._watcher = asyncio.create_task(
            self._watch(connection, lost), name="rabbitmq-connection-watcher"
        )
        logger.info("Connected to RabbitMQ at %s", self._config.safe_url)

    def _mark_failed(self) -> None:
        if self._state is ConnectionState.CONNECTING:
            self._state = ConnectionState.DISCONNECTED

    async def _watch(
        self, connection: AbstractConnection, lost: asyncio.Future[Any]
    ) -> None:
        reason = await lost
        if self._closed:
            return
        async with self._lock.write():
            if self._closed or self._connection is not connection:
                return
            logger.error("RabbitMQ connection closed unexpectedly: %s", reason)
            self._state = ConnectionState.RECONNECTING
            self._terminate_streams("connection lost")
            if not connection.is_closed:
                # channel died on its own; drop the connection with it
                with contextlib.suppress(*BROKER_ERRORS):
                    await connection.close()
            self._connection = None
            self._channel = None
        await self._reconnect()

    async def _reconnect(self) -> None:
        attempts = self._reconnect_policy.max_retries
        for attempt in range(1, attempts + 1):
            if self._closed:
                return
            logger.info(
                "Attempting to reconnect to RabbitMQ (%d/%d)", attempt, attempts
            )
            try:
                async with self._lock.write():
                    await self._connect_locked()
            except MessagingConnectionError as e:
                logger.error("Reconnect attempt %d failed: %s", attempt, e)
                if attempt < attempts:
                    await self._reconnect_policy.wait(attempt)
                continue
            logger.info("Successfully reconnected to RabbitMQ")
            return
        if not self._closed:
            self._state = ConnectionState.DISCONNECTED
            logger.error("Failed to reconnect after %d attempts", attempts)

    def _terminate_streams(self, reason: str) -> None:
        for stream in list(self._streams):
            stream.terminate(reason)
        self._streams.clear()

    async def close(self) -> None:
        """Close channel and connection; disables reconnection. Idempotent."""
        self._closed = True
        watcher = self._watcher
        if (
            watcher is not None
            and watcher is not asyncio.current_task()
            and not watcher.done()
        ):
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher

        last_error: BaseException | None = None
        async with self._lock.write():
            self._terminate_streams("connection manager closed")
            if self._channel is not None and not self._channel.is_closed:
                try:
                    await self._channel.close()
                except BROKER_ERRORS as e:
                    logger.error("Failed to close channel: %s", e)
                    last_error = e
            if self._connection is not None and not self._connection.is_closed:
                try:
                    await self._connection.close()
                except BROKER_ERRORS as e:
                    logger.error("Failed to close connection: %s", e)
                    last_error = e
            self._channel = None
            self._connection = None
            self._state = ConnectionState.CLOSED

        if last_error is not None:
            raise MessagingConnectionError(
                f"error while closing RabbitMQ connection: {last_error}"
            ) from last_error
        logger.info("RabbitMQ connection closed")

    # ── Broker primitives ────────────────────────────────────────

    def _require_channel(self) -> AbstractChannel:
        if not self.is_connected or self._channel is None:
            raise NotConnectedError()
        return self._channel

    async def set_qos(self, prefetch_count: int, prefetch_size: int = 0) -> None:
        """Apply QoS on the channel; remembered and re-applied after a reconnect."""
        async with self._lock.read():
            channel = self._require_channel()
            try:
                await channel.set_qos(
                    prefetch_count=prefetch_count, prefetch_size=prefetch_size
                )
            except BROKER_ERRORS as e:
                raise MessagingError(f"failed to set QoS: {e}") from e
            self._qos = (prefetch_count, prefetch_size)

    async def declare_exchange(
        self,
        name: str,
        kind: str = "topic",
        *,
        durable: bool = True,
        auto_delete: bool = False,
        arguments: dict[str, Any] | None = None,
    ) -> AbstractExchange:
        async with self._lock.read():
            channel = self._require_channel()
            try:
                exchange = await channel.declare_exchange(
                    name,
                    aio_pika.ExchangeType(kind),
                    durable=durable,
                    auto_delete=auto_delete,
                    arguments=arguments,
                )
            except BROKER_ERRORS as e:
                raise MessagingError(
                    f"failed to declare exchange {name!r}: {e}"
                ) from e
        logger.info("Declared exchange %s (%s)", name, kind)
        return exchange

    async def declare_queue(
        self,
        name: str,
        *,
        durable: bool = True,
        auto_delete: bool = False,
        exclusive: bool = False,
        arguments: dict[str, Any] | None = None,
    ) -> AbstractQueue:
        async with self._lock.read():
            channel = self._require_channel()
            try:
                queue = await channel.declare_queue(
                    name,
                    durable=durable,
                    auto_delete=auto_delete,
                    exclusive=exclusive,
                    arguments=arguments,
                )
            except BROKER_ERRORS as e:
                raise MessagingError(f"failed to declare queue {name!r}: {e}") from e
        logger.info("Declared queue %s", name)
        return queue

    async def bind_queue(
        self,
        queue_name: str,
        routing_key: str,
        exchange_name: str,
        arguments: dict[str, Any] | None = None,
    ) -> None:
        async with self._lock.read():
            channel = self._require_channel()
            try:
                queue = await channel.get_queue(queue_name, ensure=False)
                await queue.bind(
                    exchange_name, routing_key=routing_key, arguments=arguments
                )
            except BROKER_ERRORS as e:
                raise MessagingError(
                    f"failed to bind queue {queue_name!r} to {exchange_name!r}: {e}"
                ) from e
        logger.info(
            "Bound queue %s to exchange %s with key %s",
            queue_name,
            exchange_name,
            routing_key,
        )

    async def publish(self, exchange: str, routing_key: str, message: Message) -> None:
        """Publish one persistent message; a single attempt, no retry."""
        async with self._lock.read():
            channel = self._require_channel()
            amqp_message = self._serializer.to_amqp(message)
            try:
                if exchange:
                    target = await channel.get_exchange(exchange, ensure=False)
                else:
                    target = channel.default_exchange
                await target.publish(
                    amqp_message, routing_key=routing_key, mandatory=False
                )
            except BROKER_ERRORS as e:
                raise PublishFailedError(
                    f"failed to publish message {message.id}: {e}", last_error=e
                ) from e
        logger.debug(
            "Published message %s (%s) to %s/%s",
            message.id,
            message.type,
            exchange or "<default>",
            routing_key,
        )

    async def consume(
        self, queue_name: str, consumer_tag: str, auto_ack: bool = False
    ) -> DeliveryStream:
        """Open a delivery stream on *queue_name* under *consumer_tag*."""
        async with self._lock.read():
            channel = self._require_channel()
            stream = DeliveryStream(queue_name, consumer_tag, auto_ack=auto_ack)
            try:
                queue = await channel.get_queue(queue_name, ensure=False)
                await queue.consume(
                    stream.push, no_ack=auto_ack, consumer_tag=consumer_tag
                )
            except BROKER_ERRORS as e:
                raise ConsumeFailedError(
                    f"failed to start consuming from {queue_name!r}: {e}"
                ) from e
            stream.attach(queue)
            self._streams.add(stream)
        logger.info("Started consuming from queue %s as %s", queue_name, consumer_tag)
        return stream
