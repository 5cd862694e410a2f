"""Duplicate suppression keyed by ``Message.id`` for at-least-once delivery."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .message import Message
    from .ports.cache import IKeyValueCache
    from .ports.handler import IMessageHandler

logger = logging.getLogger("checkin_messaging.idempotency")


class IdempotencyFilter:
    """Remembers processed message ids for ``ttl_seconds``.

    With an IKeyValueCache (e.g. Redis) the memory is shared between
    processes; without one a per-process dict with lazy expiry is used.
    """

    def __init__(
        self,
        cache: IKeyValueCache | None = None,
        *,
        key_prefix: str = "idempotency:",
        ttl_seconds: int = 86400,
    ) -> None:
        self._cache = cache
        self._prefix = key_prefix
        self._ttl = ttl_seconds
        self._expires_at: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._expires_at)

    def _purge_expired(self, now: float) -> None:
        # insertion order is expiry order since every entry shares one TTL
        while self._expires_at:
            oldest = next(iter(self._expires_at))
            if self._expires_at[oldest] > now:
                break
            del self._expires_at[oldest]

    async def is_duplicate(self, message_id: str) -> bool:
        """Return True if *message_id* was marked within the TTL."""
        if self._cache is None:
            self._purge_expired(time.monotonic())
            return message_id in self._expires_at
        return await self._cache.get(self._prefix + message_id) is not None

    async def mark_processed(self, message_id: str) -> None:
        if self._cache is None:
            now = time.monotonic()
            self._purge_expired(now)
            self._expires_at.pop(message_id, None)
            self._expires_at[message_id] = now + self._ttl
            return
        await self._cache.set(self._prefix + message_id, "1", ttl=self._ttl)

    def reset(self) -> None:
        """Forget every id held in process memory; the cache is untouched."""
        self._expires_at.clear()


class IdempotentHandler:
    """Wraps a handler so each ``Message.id`` is processed at most once.

    The id is marked only after the inner handler succeeds, so a failed
    attempt is still retried.
    """

    def __init__(
        self, inner: IMessageHandler, idempotency: IdempotencyFilter | None = None
    ) -> None:
        self._inner = inner
        self._filter = idempotency or IdempotencyFilter()

    @property
    def name(self) -> str:
        return self._inner.name

    def can_handle(self, message_type: str) -> bool:
        return self._inner.can_handle(message_type)

    async def handle(self, message: Message) -> None:
        if await self._filter.is_duplicate(message.id):
            logger.info("Skipping duplicate message %s (%s)", message.id, message.type)
            return
        await self._inner.handle(message)
        await self._filter.mark_processed(message.id)
