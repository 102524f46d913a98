"""Booking model: a student's seat on a class instance."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from dancedesk.models.base import TimestampMixin, new_uuid
from dancedesk.models.subscription import SubscriptionType


class BookingStatus(StrEnum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Booking(TimestampMixin, SQLModel, table=True):
    __tablename__ = "bookings"
    __table_args__ = (UniqueConstraint("instance_id", "user_id"),)

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    instance_id: uuid.UUID = Field(foreign_key="class_instances.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    subscription_id: uuid.UUID = Field(foreign_key="subscriptions.id", nullable=False)

    booking_type: SubscriptionType = Field(nullable=False)
    status: BookingStatus = Field(default=BookingStatus.CONFIRMED)
    clip_refunded: bool = Field(default=False)


# ── Pydantic schemas ─────────────────────────────────────────

class BookingCreate(SQLModel):
    instance_id: uuid.UUID


class BookingRead(SQLModel):
    id: uuid.UUID
    instance_id: uuid.UUID
    user_id: uuid.UUID
    subscription_id: uuid.UUID
    booking_type: SubscriptionType
    status: BookingStatus
    clip_refunded: bool
    created_at: datetime
