"""Class instances: the bookable dated occurrences of a class."""

import uuid
from datetime import datetime, timedelta

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel
from sqlmodel import select

from dancedesk.api.deps import Auth, Session, require_admin
from dancedesk.models.base import as_naive_utc, utcnow
from dancedesk.models.booking import Booking, BookingRead
from dancedesk.models.class_instance import ClassInstance, ClassInstanceRead, InstanceCancel
from dancedesk.services.bookings import cancel_instance
from dancedesk.services.errors import BookingError

router = APIRouter(prefix="/instances", tags=["instances"])


class CancelResponse(BaseModel):
    instances_cancelled: int
    bookings_cancelled: int


@router.get("", response_model=list[ClassInstanceRead])
async def list_instances(
    auth: Auth,
    session: Session,
    start: datetime | None = None,
    end: datetime | None = None,
    include_cancelled: bool = False,
) -> list[ClassInstanceRead]:
    """Instances in a window; defaults to the coming week."""
    window_start = as_naive_utc(start) if start else utcnow()
    window_end = as_naive_utc(end) if end else window_start + timedelta(days=7)

    stmt = select(ClassInstance).where(
        ClassInstance.tenant_id == auth.tenant_id,
        ClassInstance.start >= window_start,
        ClassInstance.start <= window_end,
    )
    if not include_cancelled:
        stmt = stmt.where(ClassInstance.is_cancelled.is_(False))  # type: ignore[union-attr]
    stmt = stmt.order_by(ClassInstance.start.asc())  # type: ignore[union-attr]
    result = await session.execute(stmt)
    return [ClassInstanceRead.model_validate(i) for i in result.scalars().all()]


@router.get("/{instance_id}", response_model=ClassInstanceRead)
async def get_instance(
    instance_id: uuid.UUID,
    auth: Auth,
    session: Session,
) -> ClassInstanceRead:
    instance = await get_instance_or_404(instance_id, auth.tenant_id, session)
    return ClassInstanceRead.model_validate(instance)


@router.get("/{instance_id}/bookings", response_model=list[BookingRead])
async def list_instance_bookings(
    instance_id: uuid.UUID,
    auth: Auth,
    session: Session,
) -> list[BookingRead]:
    """Attendance list for the front desk."""
    require_admin(auth)
    await get_instance_or_404(instance_id, auth.tenant_id, session)
    result = await session.execute(
        select(Booking)
        .where(Booking.instance_id == instance_id)
        .order_by(Booking.created_at.asc())  # type: ignore[union-attr]
    )
    return [BookingRead.model_validate(b) for b in result.scalars().all()]


@router.post("/{instance_id}/cancel", response_model=CancelResponse)
async def cancel(
    instance_id: uuid.UUID,
    body: InstanceCancel,
    auth: Auth,
    session: Session,
) -> CancelResponse:
    """Cancel one instance or the whole remaining series; clips are refunded."""
    require_admin(auth)
    instance = await get_instance_or_404(instance_id, auth.tenant_id, session)
    try:
        cancelled, affected = await cancel_instance(
            session, instance, reason=body.reason, entire_series=body.entire_series,
        )
    except BookingError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return CancelResponse(instances_cancelled=cancelled, bookings_cancelled=affected)


async def get_instance_or_404(
    instance_id: uuid.UUID, tenant_id: uuid.UUID, session
) -> ClassInstance:
    result = await session.execute(
        select(ClassInstance).where(
            ClassInstance.id == instance_id,
            ClassInstance.tenant_id == tenant_id,
        )
    )
    instance = result.scalar_one_or_none()
    if instance is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class instance not found")
    return instance
