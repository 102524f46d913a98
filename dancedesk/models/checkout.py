"""Checkout model: a purchase started through the API, awaiting the provider."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from dancedesk.models.base import TimestampMixin, new_uuid
from dancedesk.models.subscription import PaymentProvider


class CheckoutStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Checkout(TimestampMixin, SQLModel, table=True):
    __tablename__ = "checkouts"
    __table_args__ = (UniqueConstraint("provider", "provider_reference"),)

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    pass_id: uuid.UUID = Field(foreign_key="passes.id", nullable=False)

    provider: PaymentProvider = Field(nullable=False)
    # Stripe checkout session id or Vipps order id
    provider_reference: str = Field(max_length=255, nullable=False, index=True)
    redirect_url: str = Field(default="", max_length=2048)

    amount: int = Field(nullable=False)  # minor units (øre / cents)
    currency: str = Field(max_length=3, nullable=False)
    status: CheckoutStatus = Field(default=CheckoutStatus.PENDING)
    subscription_id: uuid.UUID | None = Field(
        default=None, foreign_key="subscriptions.id", nullable=True,
    )


# ── Pydantic schemas ─────────────────────────────────────────

class CheckoutCreate(SQLModel):
    pass_id: uuid.UUID
    provider: PaymentProvider = PaymentProvider.STRIPE
    success_url: str = Field(max_length=2048)
    cancel_url: str = Field(default="", max_length=2048)


class CheckoutRead(SQLModel):
    id: uuid.UUID
    pass_id: uuid.UUID
    provider: PaymentProvider
    provider_reference: str
    redirect_url: str
    amount: int
    currency: str
    status: CheckoutStatus
    subscription_id: uuid.UUID | None
    created_at: datetime
