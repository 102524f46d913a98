"""Class instance model: one scheduled occurrence of a class."""

import uuid
from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from dancedesk.models.base import TimestampMixin, new_uuid


class ClassInstance(TimestampMixin, SQLModel, table=True):
    __tablename__ = "class_instances"
    __table_args__ = (UniqueConstraint("class_id", "start"),)

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    class_id: uuid.UUID = Field(foreign_key="classes.id", nullable=False, index=True)

    start: datetime = Field(nullable=False, index=True)  # naive UTC
    end: datetime = Field(nullable=False)
    capacity: int = Field(nullable=False)
    booking_count: int = Field(default=0)

    is_cancelled: bool = Field(default=False)
    cancellation_reason: str | None = Field(default=None, max_length=500)

    @property
    def remaining_capacity(self) -> int:
        return max(self.capacity - self.booking_count, 0)


# ── Pydantic schemas ─────────────────────────────────────────

class ClassInstanceRead(SQLModel):
    id: uuid.UUID
    class_id: uuid.UUID
    start: datetime
    end: datetime
    capacity: int
    booking_count: int
    remaining_capacity: int
    is_cancelled: bool
    cancellation_reason: str | None


class InstanceCancel(SQLModel):
    reason: str = Field(default="", max_length=500)
    entire_series: bool = False
