"""Subscription model: a user's purchased instance of a Pass."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlmodel import Field, SQLModel

from dancedesk.models.base import NaiveUTCDatetime, TimestampMixin, new_uuid


class SubscriptionType(StrEnum):
    SINGLE = "single"
    MULTI_PASS = "multi-pass"
    CLIPCARD = "clipcard"
    MONTHLY = "monthly"
    COURSE = "course"


class PaymentProvider(StrEnum):
    STRIPE = "stripe"
    VIPPS = "vipps"
    MANUAL = "manual"


class SubscriptionOrigin(StrEnum):
    WEBHOOK = "webhook"
    RECONCILIATION = "reconciliation"
    ADMIN = "admin"


class Subscription(TimestampMixin, SQLModel, table=True):
    __tablename__ = "subscriptions"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    pass_id: uuid.UUID | None = Field(default=None, foreign_key="passes.id", nullable=True)
    pass_name: str = Field(default="", max_length=255)

    type: SubscriptionType = Field(nullable=False)
    start_date: datetime = Field(nullable=False)
    end_date: datetime = Field(nullable=False, index=True)
    remaining_clips: int | None = Field(default=None, nullable=True)  # None = unlimited
    is_active: bool = Field(default=True)
    purchase_price: float = Field(default=0.0)

    payment_provider: PaymentProvider = Field(default=PaymentProvider.STRIPE)
    stripe_session_id: str | None = Field(
        default=None, max_length=255, unique=True, nullable=True, index=True,
    )
    stripe_payment_id: str | None = Field(default=None, max_length=255, nullable=True, index=True)
    vipps_order_id: str | None = Field(default=None, max_length=50, unique=True, nullable=True)
    origin: SubscriptionOrigin = Field(default=SubscriptionOrigin.WEBHOOK)


# ── Pydantic schemas ─────────────────────────────────────────

class SubscriptionGrant(SQLModel):
    """Admin-side manual creation, for payments taken outside the API."""
    user_id: uuid.UUID
    pass_id: uuid.UUID
    start_date: NaiveUTCDatetime | None = None
    purchase_price: float | None = Field(default=None, ge=0)


class SubscriptionUpdate(SQLModel):
    end_date: NaiveUTCDatetime | None = None
    remaining_clips: int | None = Field(default=None, ge=0)
    is_active: bool | None = None


class SubscriptionRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    user_id: uuid.UUID
    pass_id: uuid.UUID | None
    pass_name: str
    type: SubscriptionType
    start_date: datetime
    end_date: datetime
    remaining_clips: int | None
    is_active: bool
    purchase_price: float
    payment_provider: PaymentProvider
    stripe_session_id: str | None
    stripe_payment_id: str | None
    vipps_order_id: str | None
    origin: SubscriptionOrigin
    created_at: datetime
