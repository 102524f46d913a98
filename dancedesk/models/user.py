"""User model: a person known to the external identity provider."""

import uuid
from enum import StrEnum

from sqlmodel import Field, SQLModel

from dancedesk.models.base import TimestampMixin, new_uuid


class UserRole(StrEnum):
    ADMIN = "admin"
    STUDENT = "student"
    PENDING = "pending"


def normalize_role(value: str | None) -> UserRole:
    """Map whatever role string a source sent to a known role."""
    try:
        return UserRole((value or "").strip().lower())
    except ValueError:
        return UserRole.PENDING


class User(TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    # Subject id issued by the identity provider (e.g. "user_2abc...")
    auth_subject: str = Field(max_length=255, unique=True, nullable=False, index=True)
    tenant_id: uuid.UUID | None = Field(
        default=None, foreign_key="tenants.id", nullable=True, index=True,
    )
    email: str = Field(default="", max_length=320, index=True)
    name: str = Field(default="", max_length=255)
    role: UserRole = Field(default=UserRole.STUDENT)
    is_active: bool = Field(default=True)


# ── Pydantic schemas ─────────────────────────────────────────

class UserCreate(SQLModel):
    auth_subject: str = Field(max_length=255)
    email: str = Field(default="", max_length=320)
    name: str = Field(default="", max_length=255)
    role: UserRole = UserRole.STUDENT


class UserUpdate(SQLModel):
    email: str | None = Field(default=None, max_length=320)
    name: str | None = Field(default=None, max_length=255)
    role: UserRole | None = None
    is_active: bool | None = None


class UserRead(SQLModel):
    id: uuid.UUID
    auth_subject: str
    tenant_id: uuid.UUID | None
    email: str
    name: str
    role: UserRole
    is_active: bool
