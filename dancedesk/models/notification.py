"""Announcements a school posts to its members, and who has read them."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from dancedesk.models.base import NaiveUTCDatetime, TimestampMixin, new_uuid


class NotificationType(StrEnum):
    GENERAL = "general"
    CLASS_UPDATE = "class_update"
    PAYMENT_REMINDER = "payment_reminder"
    SCHEDULE_CHANGE = "schedule_change"
    IMPORTANT = "important"


class NotificationPriority(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


PRIORITY_RANK = {
    NotificationPriority.LOW: 0,
    NotificationPriority.NORMAL: 1,
    NotificationPriority.HIGH: 2,
    NotificationPriority.URGENT: 3,
}


class Audience(StrEnum):
    ALL = "all"
    STUDENTS = "students"
    ADMINS = "admins"
    ACTIVE_SUBSCRIBERS = "active_subscribers"


class Notification(TimestampMixin, SQLModel, table=True):
    __tablename__ = "notifications"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    author_id: uuid.UUID = Field(foreign_key="users.id", nullable=False)
    title: str = Field(max_length=100)
    message: str = Field(max_length=500)
    type: NotificationType = Field(default=NotificationType.GENERAL)
    priority: NotificationPriority = Field(default=NotificationPriority.NORMAL)
    audience: Audience = Field(default=Audience.ALL)
    is_active: bool = Field(default=True)
    expires_at: datetime | None = Field(default=None, nullable=True)
    action_url: str | None = Field(default=None, max_length=2048)
    action_text: str | None = Field(default=None, max_length=100)


class NotificationReceipt(SQLModel, table=True):
    """One row per member who has read a notification."""

    __tablename__ = "notification_receipts"
    __table_args__ = (UniqueConstraint("notification_id", "user_id"),)

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    notification_id: uuid.UUID = Field(foreign_key="notifications.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    read_at: datetime = Field(nullable=False)


# ── Pydantic schemas ─────────────────────────────────────────

class NotificationCreate(SQLModel):
    title: str = Field(min_length=1, max_length=100)
    message: str = Field(min_length=1, max_length=500)
    type: NotificationType = NotificationType.GENERAL
    priority: NotificationPriority = NotificationPriority.NORMAL
    audience: Audience = Audience.ALL
    expires_at: NaiveUTCDatetime | None = None
    action_url: str | None = Field(default=None, max_length=2048)
    action_text: str | None = Field(default=None, max_length=100)


class NotificationUpdate(SQLModel):
    title: str | None = Field(default=None, min_length=1, max_length=100)
    message: str | None = Field(default=None, min_length=1, max_length=500)
    type: NotificationType | None = None
    priority: NotificationPriority | None = None
    audience: Audience | None = None
    is_active: bool | None = None
    expires_at: NaiveUTCDatetime | None = None
    action_url: str | None = Field(default=None, max_length=2048)
    action_text: str | None = Field(default=None, max_length=100)


class NotificationRead(SQLModel):
    """Admin view, with how many members have read it."""
    id: uuid.UUID
    tenant_id: uuid.UUID
    author_id: uuid.UUID
    title: str
    message: str
    type: NotificationType
    priority: NotificationPriority
    audience: Audience
    is_active: bool
    expires_at: datetime | None
    action_url: str | None
    action_text: str | None
    created_at: datetime
    updated_at: datetime
    read_count: int = 0


class InboxItem(SQLModel):
    id: uuid.UUID
    title: str
    message: str
    type: NotificationType
    priority: NotificationPriority
    action_url: str | None
    action_text: str | None
    created_at: datetime
    is_read: bool = False
