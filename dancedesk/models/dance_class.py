"""Class model: a single or weekly-recurring class definition."""

import uuid
from datetime import date, datetime, time

from pydantic import field_validator
from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel

from dancedesk.models.base import TimestampMixin, new_uuid

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class WeeklySlot(SQLModel):
    day_of_week: str
    start_time: time
    end_time: time | None = None

    @field_validator("day_of_week")
    @classmethod
    def _known_day(cls, value: str) -> str:
        day = value.strip().lower()
        if day not in WEEKDAYS:
            raise ValueError(f"day_of_week must be one of {', '.join(WEEKDAYS)}")
        return day


class DanceClass(TimestampMixin, SQLModel, table=True):
    __tablename__ = "classes"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)

    title: str = Field(max_length=255, nullable=False)
    description: str = Field(default="", max_length=2000)
    instructor: str = Field(default="", max_length=255)
    level: str = Field(default="all-levels", max_length=50)
    dance_style: str = Field(default="other", max_length=50)
    location: str = Field(default="", max_length=255)
    capacity: int = Field(default=20, ge=1)
    duration_minutes: int = Field(default=60, ge=1)
    price: float = Field(default=0.0, ge=0)

    is_recurring: bool = Field(default=False)
    recurrence_start: date | None = Field(default=None, nullable=True)
    recurrence_end: date | None = Field(default=None, nullable=True)
    # JSON list of {"day_of_week": "monday", "start_time": "18:00", "end_time": "19:00"}
    weekly_schedule: list[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    # Local wall-clock time in the tenant timezone
    single_class_date: datetime | None = Field(default=None, nullable=True)

    is_active: bool = Field(default=True)


# ── Pydantic schemas ─────────────────────────────────────────

class DanceClassCreate(SQLModel):
    title: str = Field(max_length=255)
    description: str = Field(default="", max_length=2000)
    instructor: str = Field(default="", max_length=255)
    level: str = Field(default="all-levels", max_length=50)
    dance_style: str = Field(default="other", max_length=50)
    location: str = Field(default="", max_length=255)
    capacity: int = Field(default=20, ge=1)
    duration_minutes: int = Field(default=60, ge=1)
    price: float = Field(default=0.0, ge=0)
    is_recurring: bool = False
    recurrence_start: date | None = None
    recurrence_end: date | None = None
    weekly_schedule: list[WeeklySlot] = Field(default_factory=list)
    single_class_date: datetime | None = None


class DanceClassUpdate(SQLModel):
    title: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    instructor: str | None = Field(default=None, max_length=255)
    location: str | None = Field(default=None, max_length=255)
    capacity: int | None = Field(default=None, ge=1)
    recurrence_end: date | None = None
    is_active: bool | None = None


class DanceClassRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    title: str
    description: str
    instructor: str
    level: str
    dance_style: str
    location: str
    capacity: int
    duration_minutes: int
    price: float
    is_recurring: bool
    recurrence_start: date | None
    recurrence_end: date | None
    weekly_schedule: list[dict]
    single_class_date: datetime | None
    is_active: bool
