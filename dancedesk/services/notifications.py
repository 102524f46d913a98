"""Who sees which school announcement, and read receipts."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from dancedesk.models.base import utcnow
from dancedesk.models.notification import (
    PRIORITY_RANK,
    Audience,
    InboxItem,
    Notification,
    NotificationReceipt,
)
from dancedesk.models.user import User, UserRole
from dancedesk.services.subscriptions import active_subscriptions

logger = logging.getLogger(__name__)


def audiences_for(user: User, has_active_subscription: bool) -> set[Audience]:
    audiences = {Audience.ALL}
    if user.role == UserRole.STUDENT:
        audiences.add(Audience.STUDENTS)
    elif user.role == UserRole.ADMIN:
        audiences.add(Audience.ADMINS)
    if has_active_subscription:
        audiences.add(Audience.ACTIVE_SUBSCRIBERS)
    return audiences


def is_visible(notification: Notification, audiences: set[Audience], now: datetime) -> bool:
    if not notification.is_active or notification.audience not in audiences:
        return False
    return notification.expires_at is None or notification.expires_at > now


async def inbox(
    session: AsyncSession, user: User, now: datetime | None = None
) -> list[InboxItem]:
    """Live notifications addressed to a member, most urgent and newest first."""
    now = now or utcnow()
    subs = await active_subscriptions(session, user.id, user.tenant_id, now)
    audiences = audiences_for(user, bool(subs))

    result = await session.execute(
        select(Notification).where(
            Notification.tenant_id == user.tenant_id,
            Notification.is_active.is_(True),  # type: ignore[union-attr]
        )
    )
    visible = [n for n in result.scalars().all() if is_visible(n, audiences, now)]
    visible.sort(key=lambda n: (PRIORITY_RANK[n.priority], n.created_at), reverse=True)

    read = await session.execute(
        select(NotificationReceipt.notification_id).where(
            NotificationReceipt.user_id == user.id,
        )
    )
    read_ids = set(read.scalars().all())
    return [
        InboxItem.model_validate(n, update={"is_read": n.id in read_ids})
        for n in visible
    ]


async def read_counts(
    session: AsyncSession, notification_ids: list[uuid.UUID]
) -> dict[uuid.UUID, int]:
    if not notification_ids:
        return {}
    result = await session.execute(
        select(NotificationReceipt.notification_id, func.count())
        .where(NotificationReceipt.notification_id.in_(notification_ids))  # type: ignore[attr-defined]
        .group_by(NotificationReceipt.notification_id)
    )
    return {row[0]: row[1] for row in result.all()}


async def mark_read(
    session: AsyncSession, notification: Notification, user: User
) -> bool:
    """Record a read receipt; returns False if the member had already read it."""
    existing = await session.execute(
        select(NotificationReceipt).where(
            NotificationReceipt.notification_id == notification.id,
            NotificationReceipt.user_id == user.id,
        )
    )
    if existing.scalar_one_or_none() is not None:
        return False
    session.add(NotificationReceipt(
        notification_id=notification.id, user_id=user.id, read_at=utcnow(),
    ))
    try:
        await session.commit()
    except IntegrityError:
        # Another request recorded the same receipt first.
        await session.rollback()
        return False
    return True


async def mark_unread(
    session: AsyncSession, notification: Notification, user: User
) -> bool:
    result = await session.execute(
        delete(NotificationReceipt).where(
            NotificationReceipt.notification_id == notification.id,
            NotificationReceipt.user_id == user.id,
        )
    )
    await session.commit()
    return result.rowcount > 0


async def delete_notification(session: AsyncSession, notification: Notification) -> None:
    await session.execute(
        delete(NotificationReceipt).where(
            NotificationReceipt.notification_id == notification.id,
        )
    )
    await session.delete(notification)
    await session.commit()
    logger.info("Deleted notification %s at tenant %s", notification.id, notification.tenant_id)
