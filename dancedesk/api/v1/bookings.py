"""Bookings: students reserve seats with their passes."""

import uuid

from fastapi import APIRouter, HTTPException, status
from sqlmodel import select

from dancedesk.api.deps import Auth, Session
from dancedesk.api.v1.instances import get_instance_or_404
from dancedesk.models.booking import Booking, BookingCreate, BookingRead, BookingStatus
from dancedesk.models.user import User
from dancedesk.services.bookings import book, cancel_booking
from dancedesk.services.errors import BookingError

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def create_booking(
    body: BookingCreate,
    auth: Auth,
    session: Session,
) -> BookingRead:
    instance = await get_instance_or_404(body.instance_id, auth.tenant_id, session)
    user = await session.get(User, auth.user_id)
    try:
        booking = await book(session, user, instance)
    except BookingError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return BookingRead.model_validate(booking)


@router.get("", response_model=list[BookingRead])
async def list_bookings(
    auth: Auth,
    session: Session,
    user_id: uuid.UUID | None = None,
    include_cancelled: bool = False,
) -> list[BookingRead]:
    """Own bookings; admins may list anyone's."""
    stmt = select(Booking).where(Booking.tenant_id == auth.tenant_id)
    if not auth.is_admin:
        stmt = stmt.where(Booking.user_id == auth.user_id)
    elif user_id is not None:
        stmt = stmt.where(Booking.user_id == user_id)
    if not include_cancelled:
        stmt = stmt.where(Booking.status == BookingStatus.CONFIRMED)
    stmt = stmt.order_by(Booking.created_at.desc())  # type: ignore[union-attr]
    result = await session.execute(stmt)
    return [BookingRead.model_validate(b) for b in result.scalars().all()]


@router.post("/{booking_id}/cancel", response_model=BookingRead)
async def cancel(
    booking_id: uuid.UUID,
    auth: Auth,
    session: Session,
) -> BookingRead:
    stmt = select(Booking).where(
        Booking.id == booking_id,
        Booking.tenant_id == auth.tenant_id,
    )
    if not auth.is_admin:
        stmt = stmt.where(Booking.user_id == auth.user_id)
    result = await session.execute(stmt)
    booking = result.scalar_one_or_none()
    if booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")

    try:
        booking = await cancel_booking(session, booking)
    except BookingError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return BookingRead.model_validate(booking)
