"""Outbound webhooks a school registers to hear about bookings and payments."""

import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import field_validator
from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel

from dancedesk.models.base import TimestampMixin, new_uuid


class WebhookEvent(StrEnum):
    SUBSCRIPTION_CREATED = "subscription.created"
    BOOKING_CREATED = "booking.created"
    BOOKING_CANCELLED = "booking.cancelled"
    CLASS_CANCELLED = "class.cancelled"
    ISSUES_FOUND = "maintenance.issues_found"


class Webhook(TimestampMixin, SQLModel, table=True):
    __tablename__ = "webhooks"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    url: str = Field(max_length=2048)
    secret: str = Field(max_length=256)
    events: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    is_active: bool = Field(default=True)
    description: str = Field(default="", max_length=500)

    # Outcome of the most recent delivery attempt
    last_delivery_at: datetime | None = Field(default=None)
    last_status_code: int | None = Field(default=None)
    consecutive_failures: int = Field(default=0)


def _check_url(value: str) -> str:
    if not value.startswith(("https://", "http://")):
        raise ValueError("Webhook URL must be http(s)")
    return value


def _check_events(value: list[str]) -> list[str]:
    valid = {e.value for e in WebhookEvent}
    unknown = [e for e in value if e not in valid]
    if unknown:
        raise ValueError(f"Invalid event type(s): {', '.join(unknown)}. Valid: {sorted(valid)}")
    if not value:
        raise ValueError("At least one event is required")
    return list(dict.fromkeys(value))


# ── Pydantic schemas ─────────────────────────────────────────

class WebhookCreate(SQLModel):
    url: str = Field(max_length=2048)
    events: list[str]
    description: str = Field(default="", max_length=500)
    secret: str | None = Field(default=None, min_length=16, max_length=256)

    @field_validator("url")
    @classmethod
    def _url(cls, value: str) -> str:
        return _check_url(value)

    @field_validator("events")
    @classmethod
    def _events(cls, value: list[str]) -> list[str]:
        return _check_events(value)


class WebhookUpdate(SQLModel):
    url: str | None = Field(default=None, max_length=2048)
    events: list[str] | None = None
    description: str | None = Field(default=None, max_length=500)
    is_active: bool | None = None

    @field_validator("url")
    @classmethod
    def _url(cls, value: str | None) -> str | None:
        return value if value is None else _check_url(value)

    @field_validator("events")
    @classmethod
    def _events(cls, value: list[str] | None) -> list[str] | None:
        return value if value is None else _check_events(value)


class WebhookRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    url: str
    events: list[str]
    is_active: bool
    description: str
    last_delivery_at: datetime | None
    last_status_code: int | None
    consecutive_failures: int
    created_at: datetime
    updated_at: datetime


class WebhookCreated(WebhookRead):
    """Only the create response carries the signing secret."""
    secret: str
