"""Pass model: a purchasable product entitling a student to classes."""

import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import model_validator
from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from dancedesk.models.base import NaiveUTCDatetime, TimestampMixin, new_uuid


class PassType(StrEnum):
    SINGLE = "single"
    MULTI_PASS = "multi-pass"
    MULTI = "multi"  # clipcard
    UNLIMITED = "unlimited"
    COURSE = "course"


class ValidityType(StrEnum):
    DAYS = "days"
    DATE = "date"


CLIP_BASED_TYPES = frozenset({PassType.MULTI_PASS, PassType.MULTI, PassType.COURSE})


class Pass(TimestampMixin, SQLModel, table=True):
    __tablename__ = "passes"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)

    name: str = Field(max_length=255, nullable=False)
    description: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    type: PassType = Field(nullable=False)
    price: float = Field(default=0.0, ge=0)

    # Either a rolling number of days from purchase or a fixed calendar date.
    # Legacy rows may have validity_type unset with only validity_days.
    validity_type: ValidityType | None = Field(default=ValidityType.DAYS, nullable=True)
    validity_days: int | None = Field(default=None, nullable=True)
    expiry_date: datetime | None = Field(default=None, nullable=True)

    classes_limit: int | None = Field(default=None, nullable=True)
    is_active: bool = Field(default=True)


# ── Pydantic schemas ─────────────────────────────────────────

class PassCreate(SQLModel):
    name: str = Field(max_length=255)
    description: str = ""
    type: PassType
    price: float = Field(ge=0)
    validity_type: ValidityType = ValidityType.DAYS
    validity_days: int | None = Field(default=None, ge=1)
    expiry_date: NaiveUTCDatetime | None = None
    classes_limit: int | None = Field(default=None, ge=1)
    is_active: bool = True

    @model_validator(mode="after")
    def _check_rules(self) -> "PassCreate":
        if self.validity_type == ValidityType.DAYS and not self.validity_days:
            raise ValueError("validity_days is required when validity_type is 'days'")
        if self.validity_type == ValidityType.DATE and self.expiry_date is None:
            raise ValueError("expiry_date is required when validity_type is 'date'")
        if self.type in CLIP_BASED_TYPES and not self.classes_limit:
            raise ValueError(f"classes_limit is required for '{self.type}' passes")
        return self


class PassUpdate(SQLModel):
    name: str | None = Field(default=None, max_length=255)
    description: str | None = None
    price: float | None = Field(default=None, ge=0)
    validity_type: ValidityType | None = None
    validity_days: int | None = Field(default=None, ge=1)
    expiry_date: NaiveUTCDatetime | None = None
    classes_limit: int | None = Field(default=None, ge=1)
    is_active: bool | None = None


class PassRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    name: str
    description: str
    type: PassType
    price: float
    validity_type: ValidityType | None
    validity_days: int | None
    expiry_date: datetime | None
    classes_limit: int | None
    is_active: bool
    created_at: datetime
