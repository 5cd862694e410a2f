"""RedeliveryTracker: carries the retry counter across broker requeues."""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .message import Message

DELIVERY_COUNT_HEADER = "x-delivery-count"


def _as_count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return 0


class RedeliveryTracker:
    """Remembers the retry count recorded when a message was requeued.

    A broker requeue redelivers the original bytes, so the incremented
    counter would otherwise be lost. Entries are keyed by ``Message.id``
    and evicted oldest-first once ``max_entries`` is reached.
    """

    def __init__(self, max_entries: int = 10_000) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._max_entries = max_entries
        self._retries: OrderedDict[str, int] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._retries)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._retries

    def record(self, message_id: str, retry: int) -> None:
        with self._lock:
            self._retries[message_id] = retry
            self._retries.move_to_end(message_id)
            while len(self._retries) > self._max_entries:
                self._retries.popitem(last=False)

    def get(self, message_id: str) -> int | None:
        with self._lock:
            return self._retries.get(message_id)

    def forget(self, message_id: str) -> None:
        with self._lock:
            self._retries.pop(message_id, None)

    def restore(self, message: Message) -> int:
        """Raise ``message.retry`` to the tracked count; return the result.

        A quorum queue ``x-delivery-count`` header acts as a floor when the
        tracker has no entry (e.g. after a process restart).
        """
        tracked = self.get(message.id) or 0
        floor = _as_count(message.get_header(DELIVERY_COUNT_HEADER))
        message.retry = max(message.retry, tracked, floor)
        return message.retry
