"""Typed event payloads carried in ``Message.body`` by the check-in service."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class EventPayload(BaseModel):
    """Base for payloads; unknown keys are kept so older consumers stay lenient."""

    model_config = ConfigDict(extra="allow")

    def to_body(self) -> dict[str, Any]:
        """Return the JSON-native dict stored as ``Message.body``."""
        return self.model_dump(mode="json", exclude_none=True)


class UserEventPayload(EventPayload):
    user_id: str
    tenant_id: str
    email: str | None = None
    name: str | None = None


class TenantEventPayload(EventPayload):
    tenant_id: str
    name: str | None = None
    domain: str | None = None


class EventEventPayload(EventPayload):
    event_id: str
    tenant_id: str
    name: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None


class EmployeeEventPayload(EventPayload):
    employee_id: str
    tenant_id: str
    name: str | None = None
    email: str | None = None
    partner_id: str | None = None


class CheckinEventPayload(EventPayload):
    checkin_id: str
    tenant_id: str
    event_id: str
    employee_id: str
    partner_id: str
    method: str
    is_valid: bool
    checkin_time: datetime


class CheckoutEventPayload(EventPayload):
    checkout_id: str
    checkin_id: str
    tenant_id: str
    event_id: str
    employee_id: str
    partner_id: str
    method: str
    is_valid: bool
    checkout_time: datetime
    work_duration: timedelta


class SystemEventPayload(EventPayload):
    level: Literal["error", "warning", "info"]
    message: str
    component: str | None = None
    context: dict[str, Any] | None = None
    error: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationEventPayload(EventPayload):
    notification_id: str
    type: Literal["email", "sms", "push"]
    body: str
    recipients: list[str]
    tenant_id: str | None = None
    user_id: str | None = None
    subject: str | None = None
    metadata: dict[str, Any] | None = None
