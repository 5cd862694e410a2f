"""Cache ports used by message handlers and the idempotency filter."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class ICacheInvalidator(Protocol):
    """
    Invalidates cached entries by key pattern.
    ``cache_name`` selects one of several named caches (usually "default").
    """

    async def invalidate_pattern(self, cache_name: str, pattern: str) -> None:
        """Remove every key in *cache_name* matching the glob *pattern*."""
        ...


@runtime_checkable
class IKeyValueCache(Protocol):
    """Minimal async key/value store with TTL support."""

    async def get(self, key: str) -> Any | None:
        """Return the value for *key*, or None if missing."""
        ...

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Set a value with optional TTL (in seconds)."""
        ...
