"""Inbound webhook ledger: one row per provider event id."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import JSON, UniqueConstraint
from sqlmodel import Column, Field, SQLModel

from dancedesk.models.base import TimestampMixin, new_uuid


class EventProvider(StrEnum):
    STRIPE = "stripe"
    VIPPS = "vipps"
    IDENTITY = "identity"


class EventStatus(StrEnum):
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"
    IGNORED = "ignored"


class ProviderEvent(TimestampMixin, SQLModel, table=True):
    __tablename__ = "provider_events"
    __table_args__ = (UniqueConstraint("provider", "event_id"),)

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    provider: EventProvider = Field(nullable=False)
    event_id: str = Field(max_length=255, nullable=False)
    event_type: str = Field(max_length=100, nullable=False)
    status: EventStatus = Field(default=EventStatus.PROCESSING)
    tenant_id: uuid.UUID | None = Field(default=None, nullable=True, index=True)
    attempts: int = Field(default=1)

    details: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    error: str | None = Field(default=None, max_length=2000)
    processing_time_ms: int | None = Field(default=None)


# ── Pydantic schemas ─────────────────────────────────────────

class ProviderEventRead(SQLModel):
    id: uuid.UUID
    provider: EventProvider
    event_id: str
    event_type: str
    status: EventStatus
    tenant_id: uuid.UUID | None
    attempts: int
    details: dict
    error: str | None
    processing_time_ms: int | None
    created_at: datetime
    updated_at: datetime
