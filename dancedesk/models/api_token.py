"""Opaque bearer tokens a school issues for its own admin tooling."""

import uuid
from datetime import datetime, timedelta

from pydantic import model_validator
from sqlmodel import Field, SQLModel

from dancedesk.core.security import generate_api_token, hash_api_token
from dancedesk.models.base import NaiveUTCDatetime, TimestampMixin, new_uuid, utcnow

DISPLAY_PREFIX_LENGTH = 8


class ApiToken(TimestampMixin, SQLModel, table=True):
    __tablename__ = "api_tokens"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    # Requests made with the token act as this user
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    name: str = Field(max_length=255, nullable=False)  # e.g. "front-desk-laptop"

    token_hash: str = Field(nullable=False, unique=True, index=True)
    token_prefix: str = Field(max_length=12, nullable=False)

    is_active: bool = Field(default=True)
    expires_at: datetime | None = Field(default=None)
    last_used_at: datetime | None = Field(default=None)
    revoked_at: datetime | None = Field(default=None)

    def revoke(self) -> None:
        self.is_active = False
        self.revoked_at = utcnow()


def issue_api_token(
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    name: str,
    expires_at: datetime | None = None,
) -> tuple[ApiToken, str]:
    """Build a token row and return it with the raw value, which is never stored."""
    raw = generate_api_token()
    token = ApiToken(
        tenant_id=tenant_id,
        user_id=user_id,
        name=name,
        token_hash=hash_api_token(raw),
        token_prefix=raw[:DISPLAY_PREFIX_LENGTH],
        expires_at=expires_at,
    )
    return token, raw


# ── Pydantic schemas ─────────────────────────────────────────

class ApiTokenCreate(SQLModel):
    name: str = Field(min_length=1, max_length=255)
    expires_at: NaiveUTCDatetime | None = None
    expires_in_days: int | None = Field(default=None, ge=1, le=365)

    @model_validator(mode="after")
    def _one_expiry(self) -> "ApiTokenCreate":
        if self.expires_at is not None and self.expires_in_days is not None:
            raise ValueError("Give either expires_at or expires_in_days, not both")
        return self

    def expiry(self) -> datetime | None:
        if self.expires_in_days is not None:
            return utcnow() + timedelta(days=self.expires_in_days)
        return self.expires_at


class ApiTokenRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    user_id: uuid.UUID
    name: str
    token_prefix: str
    is_active: bool
    expires_at: datetime | None
    last_used_at: datetime | None
    revoked_at: datetime | None
    created_at: datetime


class ApiTokenCreated(ApiTokenRead):
    raw_token: str
