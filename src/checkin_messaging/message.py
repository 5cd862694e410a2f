"""Message: the self-describing envelope carried over the broker."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import InvalidMessageError

TENANT_ID_HEADER = "tenant_id"
USER_ID_HEADER = "user_id"
CORRELATION_ID_HEADER = "correlation_id"


class Message(BaseModel):
    """Envelope for a single logical message.

    ``id`` is stable across redeliveries and identifies the logical message
    for downstream deduplication. ``type`` is a dot-namespaced key used for
    in-process dispatch only; it is independent of the broker routing key.
    ``retry`` only ever grows, once per requeue-for-retry.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str = Field(..., description="Dispatch key, e.g. 'checkin.performed'")
    body: Any = None
    headers: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    retry: int = Field(default=0, ge=0, description="Requeue-for-retry count")

    @field_validator("headers", mode="before")
    @classmethod
    def _none_headers(cls, value: Any) -> Any:
        return {} if value is None else value

    @classmethod
    def create(cls, message_type: str, body: Any = None) -> Message:
        """Build a fresh message with a new id and the current UTC timestamp."""
        return cls(type=message_type, body=body)

    # ── Headers ──────────────────────────────────────────────────

    def set_header(self, key: str, value: Any) -> Message:
        self.headers[key] = value
        return self

    def get_header(self, key: str, default: Any = None) -> Any:
        return self.headers.get(key, default)

    def _get_str_header(self, key: str) -> str | None:
        value = self.headers.get(key)
        return value if isinstance(value, str) else None

    def set_tenant_id(self, tenant_id: str) -> Message:
        return self.set_header(TENANT_ID_HEADER, tenant_id)

    def get_tenant_id(self) -> str | None:
        return self._get_str_header(TENANT_ID_HEADER)

    def set_user_id(self, user_id: str) -> Message:
        return self.set_header(USER_ID_HEADER, user_id)

    def get_user_id(self) -> str | None:
        return self._get_str_header(USER_ID_HEADER)

    def set_correlation_id(self, correlation_id: str) -> Message:
        return self.set_header(CORRELATION_ID_HEADER, correlation_id)

    def get_correlation_id(self) -> str | None:
        return self._get_str_header(CORRELATION_ID_HEADER)

    # ── Retry ────────────────────────────────────────────────────

    def increment_retry(self) -> Message:
        """Bump the retry counter in place (chainable)."""
        self.retry += 1
        return self

    # ── JSON ─────────────────────────────────────────────────────

    def to_json(self) -> bytes:
        """Encode to the JSON wire format."""
        try:
            return self.model_dump_json().encode("utf-8")
        except (TypeError, ValueError) as e:
            raise InvalidMessageError(f"failed to encode message {self.id}: {e}") from e

    @classmethod
    def from_json(cls, raw: bytes | str) -> Message:
        """Decode the JSON wire format; raises InvalidMessageError when malformed."""
        try:
            return cls.model_validate_json(raw)
        except (ValidationError, ValueError) as e:
            raise InvalidMessageError(f"failed to decode message: {e}") from e


class MessageType:
    """Dot-namespaced message types published by the check-in service."""

    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"
    USER_LOGGED_IN = "user.logged_in"
    USER_LOGGED_OUT = "user.logged_out"

    TENANT_CREATED = "tenant.created"
    TENANT_UPDATED = "tenant.updated"
    TENANT_DELETED = "tenant.deleted"

    EVENT_CREATED = "event.created"
    EVENT_UPDATED = "event.updated"
    EVENT_DELETED = "event.deleted"
    EVENT_STARTED = "event.started"
    EVENT_ENDED = "event.ended"

    EMPLOYEE_CREATED = "employee.created"
    EMPLOYEE_UPDATED = "employee.updated"
    EMPLOYEE_DELETED = "employee.deleted"

    PARTNER_CREATED = "partner.created"
    PARTNER_UPDATED = "partner.updated"
    PARTNER_DELETED = "partner.deleted"

    ROLE_CREATED = "role.created"
    ROLE_UPDATED = "role.updated"
    ROLE_DELETED = "role.deleted"

    PERMISSION_CREATED = "permission.created"
    PERMISSION_UPDATED = "permission.updated"
    PERMISSION_DELETED = "permission.deleted"

    CHECKIN_PERFORMED = "checkin.performed"
    CHECKIN_VALIDATED = "checkin.validated"
    CHECKIN_INVALID = "checkin.invalid"

    CHECKOUT_PERFORMED = "checkout.performed"
    CHECKOUT_VALIDATED = "checkout.validated"
    CHECKOUT_INVALID = "checkout.invalid"

    WORK_SESSION_COMPLETED = "work_session.completed"
    WORK_SESSION_INVALID = "work_session.invalid"

    SYSTEM_ERROR = "system.error"
    SYSTEM_WARNING = "system.warning"
    SYSTEM_INFO = "system.info"

    CACHE_INVALIDATED = "cache.invalidated"

    NOTIFICATION_SENT = "notification.sent"
    EMAIL_SENT = "email.sent"
    SMS_SENT = "sms.sent"


KNOWN_MESSAGE_TYPES: frozenset[str] = frozenset(
    value
    for name, value in vars(MessageType).items()
    if name.isupper() and isinstance(value, str)
)
