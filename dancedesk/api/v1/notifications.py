"""School announcements: admins post them, members read them."""

import uuid

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel
from sqlmodel import select

from dancedesk.api.deps import Auth, Session, require_admin
from dancedesk.models.base import utcnow
from dancedesk.models.notification import (
    InboxItem,
    Notification,
    NotificationCreate,
    NotificationRead,
    NotificationUpdate,
)
from dancedesk.models.user import User
from dancedesk.services.notifications import (
    delete_notification,
    inbox,
    mark_read,
    mark_unread,
    read_counts,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])

NULLABLE_FIELDS = {"expires_at", "action_url", "action_text"}


class ReadStatus(BaseModel):
    is_read: bool
    changed: bool


@router.post("", response_model=NotificationRead, status_code=status.HTTP_201_CREATED)
async def create_notification(
    body: NotificationCreate, auth: Auth, session: Session,
) -> NotificationRead:
    require_admin(auth)
    notification = Notification(
        tenant_id=auth.tenant_id, author_id=auth.user_id, **body.model_dump(),
    )
    session.add(notification)
    await session.commit()
    await session.refresh(notification)
    return NotificationRead.model_validate(notification)


@router.get("", response_model=list[NotificationRead])
async def list_notifications(
    auth: Auth, session: Session, include_inactive: bool = True,
) -> list[NotificationRead]:
    """Everything the school has posted, newest first, with read counts."""
    require_admin(auth)
    stmt = select(Notification).where(Notification.tenant_id == auth.tenant_id)
    if not include_inactive:
        stmt = stmt.where(Notification.is_active.is_(True))  # type: ignore[union-attr]
    stmt = stmt.order_by(Notification.created_at.desc())  # type: ignore[union-attr]
    result = await session.execute(stmt)
    notifications = list(result.scalars().all())
    counts = await read_counts(session, [n.id for n in notifications])
    return [
        NotificationRead.model_validate(n, update={"read_count": counts.get(n.id, 0)})
        for n in notifications
    ]


@router.get("/mine", response_model=list[InboxItem])
async def my_notifications(auth: Auth, session: Session) -> list[InboxItem]:
    user = await _current_user(auth, session)
    return await inbox(session, user)


@router.get("/{notification_id}", response_model=NotificationRead)
async def get_notification(
    notification_id: uuid.UUID, auth: Auth, session: Session,
) -> NotificationRead:
    require_admin(auth)
    notification = await _get_or_404(notification_id, auth, session)
    counts = await read_counts(session, [notification.id])
    return NotificationRead.model_validate(
        notification, update={"read_count": counts.get(notification.id, 0)},
    )


@router.patch("/{notification_id}", response_model=NotificationRead)
async def update_notification(
    notification_id: uuid.UUID,
    body: NotificationUpdate,
    auth: Auth,
    session: Session,
) -> NotificationRead:
    require_admin(auth)
    notification = await _get_or_404(notification_id, auth, session)
    for field, value in body.model_dump(exclude_unset=True).items():
        # Only the optional columns can be cleared
        if value is not None or field in NULLABLE_FIELDS:
            setattr(notification, field, value)
    notification.updated_at = utcnow()
    session.add(notification)
    await session.commit()
    await session.refresh(notification)
    counts = await read_counts(session, [notification.id])
    return NotificationRead.model_validate(
        notification, update={"read_count": counts.get(notification.id, 0)},
    )


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_notification(
    notification_id: uuid.UUID, auth: Auth, session: Session,
) -> None:
    require_admin(auth)
    notification = await _get_or_404(notification_id, auth, session)
    await delete_notification(session, notification)


@router.post("/{notification_id}/read", response_model=ReadStatus)
async def read_notification(
    notification_id: uuid.UUID, auth: Auth, session: Session,
) -> ReadStatus:
    notification = await _get_or_404(notification_id, auth, session)
    user = await _current_user(auth, session)
    changed = await mark_read(session, notification, user)
    return ReadStatus(is_read=True, changed=changed)


@router.delete("/{notification_id}/read", response_model=ReadStatus)
async def unread_notification(
    notification_id: uuid.UUID, auth: Auth, session: Session,
) -> ReadStatus:
    notification = await _get_or_404(notification_id, auth, session)
    user = await _current_user(auth, session)
    changed = await mark_unread(session, notification, user)
    return ReadStatus(is_read=False, changed=changed)


async def _current_user(auth: Auth, session: Session) -> User:
    user = await session.get(User, auth.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


async def _get_or_404(notification_id: uuid.UUID, auth: Auth, session: Session) -> Notification:
    result = await session.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.tenant_id == auth.tenant_id,
        )
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return notification
