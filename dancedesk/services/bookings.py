"""Booking rules: seat a student on an instance, cancel seats and classes."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from dancedesk.core import cache
from dancedesk.models.base import utcnow
from dancedesk.models.booking import Booking, BookingStatus
from dancedesk.models.class_instance import ClassInstance
from dancedesk.models.subscription import Subscription
from dancedesk.models.user import User, UserRole
from dancedesk.models.webhook import WebhookEvent
from dancedesk.services.errors import BookingError
from dancedesk.services.subscriptions import (
    active_subscriptions,
    consume_clip,
    pick_subscription_for_booking,
    refund_clip,
)
from dancedesk.services.webhook_dispatch import dispatch_webhook_event

logger = logging.getLogger(__name__)


async def _claim_seat(session: AsyncSession, instance: ClassInstance) -> None:
    """Increment booking_count only while a seat is free."""
    result = await session.execute(
        update(ClassInstance)
        .where(
            ClassInstance.id == instance.id,
            ClassInstance.is_cancelled.is_(False),  # type: ignore[union-attr]
            ClassInstance.booking_count < ClassInstance.capacity,
        )
        .values(booking_count=ClassInstance.booking_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise BookingError("Class is full")


async def _release_seat(session: AsyncSession, instance: ClassInstance) -> None:
    await session.execute(
        update(ClassInstance)
        .where(ClassInstance.id == instance.id, ClassInstance.booking_count > 0)
        .values(booking_count=ClassInstance.booking_count - 1)
        .execution_options(synchronize_session=False)
    )


async def book(
    session: AsyncSession,
    user: User,
    instance: ClassInstance,
    now: datetime | None = None,
) -> Booking:
    now = now or utcnow()

    if user.tenant_id != instance.tenant_id:
        raise BookingError("Class instance not found")
    if not user.is_active or user.role == UserRole.PENDING:
        raise BookingError("Account is awaiting approval")
    if instance.is_cancelled:
        raise BookingError("Class is cancelled")
    if instance.start <= now:
        raise BookingError("Class has already started")
    if instance.remaining_capacity <= 0:
        raise BookingError("Class is full")

    result = await session.execute(
        select(Booking).where(
            Booking.instance_id == instance.id,
            Booking.user_id == user.id,
        )
    )
    booking = result.scalar_one_or_none()
    if booking is not None and booking.status == BookingStatus.CONFIRMED:
        raise BookingError("Already booked this class")

    subs = await active_subscriptions(session, user.id, instance.tenant_id, now)
    sub = pick_subscription_for_booking(subs, now)
    if sub is None:
        raise BookingError("No valid subscription or clips remaining")

    try:
        await _claim_seat(session, instance)
        await consume_clip(session, sub)
    except BookingError:
        await session.rollback()
        raise

    if booking is None:
        booking = Booking(
            tenant_id=instance.tenant_id,
            instance_id=instance.id,
            user_id=user.id,
            subscription_id=sub.id,
            booking_type=sub.type,
        )
    else:
        # Re-booking a seat the student cancelled earlier.
        booking.subscription_id = sub.id
        booking.booking_type = sub.type
        booking.status = BookingStatus.CONFIRMED
        booking.clip_refunded = False
        booking.updated_at = now
    session.add(booking)
    await session.commit()
    await session.refresh(booking)
    await session.refresh(instance)
    await session.refresh(sub)

    logger.info(
        "User %s booked instance %s using %s subscription %s",
        user.id, instance.id, sub.type, sub.id,
    )
    cache.invalidate_tenant(instance.tenant_id)
    await dispatch_webhook_event(
        session,
        instance.tenant_id,
        WebhookEvent.BOOKING_CREATED,
        {
            "booking_id": str(booking.id),
            "instance_id": str(instance.id),
            "user_id": str(user.id),
            "subscription_id": str(sub.id),
            "remaining_clips": sub.remaining_clips,
            "remaining_capacity": instance.remaining_capacity,
        },
    )
    return booking


async def _refund_booking(session: AsyncSession, booking: Booking) -> None:
    sub = await session.get(Subscription, booking.subscription_id)
    if sub is not None:
        refund_clip(sub)
        session.add(sub)
    booking.clip_refunded = True


async def cancel_booking(
    session: AsyncSession,
    booking: Booking,
    now: datetime | None = None,
) -> Booking:
    """Cancel a seat; the clip comes back only if the class has not started."""
    now = now or utcnow()
    if booking.status == BookingStatus.CANCELLED:
        raise BookingError("Booking is already cancelled")

    instance = await session.get(ClassInstance, booking.instance_id)
    if instance is None:
        raise BookingError("Class instance not found")

    if now < instance.start:
        await _refund_booking(session, booking)
    booking.status = BookingStatus.CANCELLED
    booking.updated_at = now
    session.add(booking)
    await _release_seat(session, instance)
    await session.commit()
    await session.refresh(booking)
    await session.refresh(instance)

    logger.info(
        "Booking %s cancelled (clip refunded: %s)", booking.id, booking.clip_refunded
    )
    cache.invalidate_tenant(booking.tenant_id)
    await dispatch_webhook_event(
        session,
        booking.tenant_id,
        WebhookEvent.BOOKING_CANCELLED,
        {
            "booking_id": str(booking.id),
            "instance_id": str(booking.instance_id),
            "user_id": str(booking.user_id),
            "clip_refunded": booking.clip_refunded,
        },
    )
    return booking


async def cancel_instance(
    session: AsyncSession,
    instance: ClassInstance,
    reason: str = "",
    entire_series: bool = False,
    now: datetime | None = None,
) -> tuple[int, int]:
    """Cancel one instance or all future ones of its class.

    Every confirmed booking on a cancelled instance is cancelled and its
    clip refunded. Returns ``(instances_cancelled, bookings_affected)``.
    """
    now = now or utcnow()
    if entire_series:
        result = await session.execute(
            select(ClassInstance).where(
                ClassInstance.class_id == instance.class_id,
                ClassInstance.start >= now,
                ClassInstance.is_cancelled.is_(False),  # type: ignore[union-attr]
            )
        )
        targets = list(result.scalars().all())
        default_reason = "Series cancelled by admin"
    else:
        if instance.is_cancelled:
            raise BookingError("Class is already cancelled")
        targets = [instance]
        default_reason = "Cancelled by admin"

    affected = 0
    for target in targets:
        target.is_cancelled = True
        target.cancellation_reason = reason or default_reason
        target.booking_count = 0
        target.updated_at = now
        session.add(target)

        bookings = await session.execute(
            select(Booking).where(
                Booking.instance_id == target.id,
                Booking.status == BookingStatus.CONFIRMED,
            )
        )
        for booking in bookings.scalars().all():
            await _refund_booking(session, booking)
            booking.status = BookingStatus.CANCELLED
            booking.updated_at = now
            session.add(booking)
            affected += 1
    await session.commit()

    logger.info(
        "Cancelled %d instances of class %s, %d bookings refunded",
        len(targets), instance.class_id, affected,
    )
    cache.invalidate_tenant(instance.tenant_id)
    if targets:
        await dispatch_webhook_event(
            session,
            instance.tenant_id,
            WebhookEvent.CLASS_CANCELLED,
            {
                "class_id": str(instance.class_id),
                "instance_ids": [str(t.id) for t in targets],
                "reason": reason or default_reason,
                "bookings_cancelled": affected,
            },
        )
    return len(targets), affected
