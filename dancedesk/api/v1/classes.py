"""Classes: definitions, their schedule and generated instances."""

import logging
import uuid
from datetime import datetime, timedelta

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel
from sqlmodel import select

from dancedesk.api.deps import Auth, Session, require_admin
from dancedesk.core.config import get_settings
from dancedesk.models.base import utcnow
from dancedesk.models.class_instance import ClassInstance, ClassInstanceRead
from dancedesk.models.dance_class import (
    DanceClass,
    DanceClassCreate,
    DanceClassRead,
    DanceClassUpdate,
)
from dancedesk.models.tenant import Tenant
from dancedesk.services.errors import ScheduleError
from dancedesk.services.schedule import materialize_instances

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/classes", tags=["classes"])


class GenerateResponse(BaseModel):
    created: int
    until: datetime


def _check_schedule(body: DanceClassCreate) -> None:
    if body.is_recurring:
        if body.recurrence_start is None or not body.weekly_schedule:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
                detail="Recurring classes need recurrence_start and a weekly_schedule",
            )
        if body.recurrence_end and body.recurrence_end < body.recurrence_start:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
                detail="recurrence_end is before recurrence_start",
            )
    elif body.single_class_date is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail="One-off classes need single_class_date",
        )


async def _generate(session, cls: DanceClass, days: int) -> GenerateResponse:
    tenant = await session.get(Tenant, cls.tenant_id)
    until = utcnow() + timedelta(days=days)
    try:
        created = await materialize_instances(session, cls, tenant, until)
    except ScheduleError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc),
        ) from exc
    return GenerateResponse(created=created, until=until)


@router.post("", response_model=DanceClassRead, status_code=status.HTTP_201_CREATED)
async def create_class(
    body: DanceClassCreate,
    auth: Auth,
    session: Session,
) -> DanceClassRead:
    """Create a class and generate its instances for the default horizon."""
    require_admin(auth)
    _check_schedule(body)

    data = body.model_dump(exclude={"weekly_schedule"})
    cls = DanceClass(
        tenant_id=auth.tenant_id,
        weekly_schedule=[slot.model_dump(mode="json") for slot in body.weekly_schedule],
        **data,
    )
    session.add(cls)
    await session.commit()
    await session.refresh(cls)

    await _generate(session, cls, get_settings().instance_horizon_days)
    return DanceClassRead.model_validate(cls)


@router.get("", response_model=list[DanceClassRead])
async def list_classes(
    auth: Auth,
    session: Session,
    include_inactive: bool = False,
) -> list[DanceClassRead]:
    stmt = select(DanceClass).where(DanceClass.tenant_id == auth.tenant_id)
    if not include_inactive:
        stmt = stmt.where(DanceClass.is_active.is_(True))  # type: ignore[union-attr]
    stmt = stmt.order_by(DanceClass.title.asc())  # type: ignore[union-attr]
    result = await session.execute(stmt)
    return [DanceClassRead.model_validate(c) for c in result.scalars().all()]


@router.get("/{class_id}", response_model=DanceClassRead)
async def get_class(
    class_id: uuid.UUID,
    auth: Auth,
    session: Session,
) -> DanceClassRead:
    cls = await _get_or_404(class_id, auth.tenant_id, session)
    return DanceClassRead.model_validate(cls)


@router.patch("/{class_id}", response_model=DanceClassRead)
async def update_class(
    class_id: uuid.UUID,
    body: DanceClassUpdate,
    auth: Auth,
    session: Session,
) -> DanceClassRead:
    require_admin(auth)
    cls = await _get_or_404(class_id, auth.tenant_id, session)

    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(cls, field, value)

    cls.updated_at = utcnow()
    session.add(cls)
    await session.commit()
    await session.refresh(cls)
    return DanceClassRead.model_validate(cls)


@router.delete("/{class_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_class(
    class_id: uuid.UUID,
    auth: Auth,
    session: Session,
) -> None:
    """Stops instance generation; existing instances and bookings stay."""
    require_admin(auth)
    cls = await _get_or_404(class_id, auth.tenant_id, session)
    cls.is_active = False
    cls.updated_at = utcnow()
    session.add(cls)
    await session.commit()


@router.post("/{class_id}/instances/generate", response_model=GenerateResponse)
async def generate_instances(
    class_id: uuid.UUID,
    auth: Auth,
    session: Session,
    days: int | None = None,
) -> GenerateResponse:
    require_admin(auth)
    cls = await _get_or_404(class_id, auth.tenant_id, session)
    if not cls.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Class is inactive")
    horizon = days if days and days > 0 else get_settings().instance_horizon_days
    result = await _generate(session, cls, horizon)
    logger.info("Generated %d instances for class %s on request", result.created, cls.id)
    return result


@router.get("/{class_id}/instances", response_model=list[ClassInstanceRead])
async def list_class_instances(
    class_id: uuid.UUID,
    auth: Auth,
    session: Session,
    include_past: bool = False,
) -> list[ClassInstanceRead]:
    await _get_or_404(class_id, auth.tenant_id, session)
    stmt = select(ClassInstance).where(ClassInstance.class_id == class_id)
    if not include_past:
        stmt = stmt.where(ClassInstance.start >= utcnow())
    stmt = stmt.order_by(ClassInstance.start.asc())  # type: ignore[union-attr]
    result = await session.execute(stmt)
    return [ClassInstanceRead.model_validate(i) for i in result.scalars().all()]


# ── Internal helper ───────────────────────────────────────────

async def _get_or_404(class_id: uuid.UUID, tenant_id: uuid.UUID, session) -> DanceClass:
    result = await session.execute(
        select(DanceClass).where(DanceClass.id == class_id, DanceClass.tenant_id == tenant_id)
    )
    cls = result.scalar_one_or_none()
    if cls is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class not found")
    return cls
