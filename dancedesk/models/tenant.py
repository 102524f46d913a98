"""Tenant model: one dance school, the top-level isolation boundary."""

import uuid
from enum import StrEnum

from sqlmodel import Field, SQLModel

from dancedesk.models.base import TimestampMixin, new_uuid


class TenantStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class ConnectStatus(StrEnum):
    NOT_CONNECTED = "not_connected"
    PENDING = "pending"
    ACTIVE = "active"


class Tenant(TimestampMixin, SQLModel, table=True):
    __tablename__ = "tenants"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    name: str = Field(max_length=255, nullable=False)
    slug: str = Field(max_length=100, unique=True, nullable=False, index=True)
    contact_email: str = Field(default="", max_length=320)
    # Set right after the owner user is created, hence nullable.
    owner_id: uuid.UUID | None = Field(default=None, nullable=True)
    status: TenantStatus = Field(default=TenantStatus.ACTIVE)

    timezone: str = Field(default="Europe/Oslo", max_length=64)
    currency: str = Field(default="NOK", max_length=3)
    allow_public_registration: bool = Field(default=True)
    require_approval: bool = Field(default=False)

    # Stripe Connect sub-account; one account per tenant and vice versa.
    stripe_account_id: str | None = Field(
        default=None, max_length=255, unique=True, nullable=True,
    )
    stripe_account_status: ConnectStatus = Field(default=ConnectStatus.NOT_CONNECTED)


# ── Pydantic schemas ─────────────────────────────────────────

class TenantUpdate(SQLModel):
    name: str | None = Field(default=None, max_length=255)
    contact_email: str | None = Field(default=None, max_length=320)
    timezone: str | None = Field(default=None, max_length=64)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    allow_public_registration: bool | None = None
    require_approval: bool | None = None
    stripe_account_id: str | None = Field(default=None, max_length=255)


class TenantRead(SQLModel):
    id: uuid.UUID
    name: str
    slug: str
    contact_email: str
    owner_id: uuid.UUID | None
    status: TenantStatus
    timezone: str
    currency: str
    allow_public_registration: bool
    require_approval: bool
    stripe_account_id: str | None
    stripe_account_status: ConnectStatus
