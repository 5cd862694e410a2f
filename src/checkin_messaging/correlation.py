"""Correlation id carried through publish and handle calls via a ContextVar."""

from __future__ import annotations

import contextlib
import uuid
from contextvars import ContextVar
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

_current: ContextVar[str | None] = ContextVar(
    "checkin_messaging_correlation_id", default=None
)


def get_correlation_id() -> str | None:
    return _current.get()


def set_correlation_id(correlation_id: str | None) -> None:
    _current.set(correlation_id)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex


@contextlib.contextmanager
def correlation_scope(correlation_id: str | None) -> Iterator[str | None]:
    """Bind *correlation_id* for the duration of the block, then restore."""
    token = _current.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _current.reset(token)
