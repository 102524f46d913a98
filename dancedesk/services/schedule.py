"""Expand class definitions into dated instances and keep them unique."""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from dancedesk.models.base import utcnow
from dancedesk.models.booking import Booking, BookingStatus
from dancedesk.models.class_instance import ClassInstance
from dancedesk.models.dance_class import WEEKDAYS, DanceClass
from dancedesk.models.subscription import Subscription
from dancedesk.models.tenant import Tenant, TenantStatus
from dancedesk.services.errors import ScheduleError
from dancedesk.services.subscriptions import refund_clip

logger = logging.getLogger(__name__)


def _zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ScheduleError(f"Unknown timezone: {tz_name}") from None


def _to_utc(day: date, at: time, tz: ZoneInfo) -> datetime:
    local = datetime.combine(day, at, tzinfo=tz)
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def _parse_time(value: str | time) -> time:
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(value)
    except (TypeError, ValueError):
        raise ScheduleError(f"Invalid time: {value!r}") from None


def _parse_slots(cls: DanceClass) -> list[tuple[int, time, time | None]]:
    slots = []
    for slot in cls.weekly_schedule:
        day_name = str(slot.get("day_of_week", "")).lower()
        if day_name not in WEEKDAYS:
            raise ScheduleError(f"Invalid day of week: {slot.get('day_of_week')!r}")
        end = slot.get("end_time")
        slots.append((
            WEEKDAYS.index(day_name),
            _parse_time(slot.get("start_time", "")),
            _parse_time(end) if end else None,
        ))
    return slots


def occurrences(
    cls: DanceClass,
    tz_name: str,
    window_start: datetime,
    window_end: datetime,
) -> list[tuple[datetime, datetime]]:
    """(start, end) pairs in naive UTC for every occurrence inside the window.

    Schedule times are wall-clock times in the tenant's timezone, so a
    18:00 class stays at 18:00 local across daylight-saving changes.
    """
    tz = _zone(tz_name)
    duration = timedelta(minutes=cls.duration_minutes)

    if not cls.is_recurring:
        if cls.single_class_date is None:
            return []
        local = cls.single_class_date
        start = _to_utc(local.date(), local.time(), tz)
        if window_start <= start <= window_end:
            return [(start, start + duration)]
        return []

    if cls.recurrence_start is None:
        raise ScheduleError(f"Recurring class '{cls.title}' has no start date")
    slots = _parse_slots(cls)

    # Pad by a day each side: local dates can differ from UTC dates.
    first = max(cls.recurrence_start, window_start.date() - timedelta(days=1))
    last = window_end.date() + timedelta(days=1)
    if cls.recurrence_end is not None:
        last = min(last, cls.recurrence_end)

    result: list[tuple[datetime, datetime]] = []
    day = first
    while day <= last:
        for weekday, start_time, end_time in slots:
            if day.weekday() != weekday:
                continue
            start = _to_utc(day, start_time, tz)
            if not (window_start <= start <= window_end):
                continue
            end = _to_utc(day, end_time, tz) if end_time else start + duration
            if end <= start:
                end = start + duration
            result.append((start, end))
        day += timedelta(days=1)
    result.sort()
    return result


async def materialize_instances(
    session: AsyncSession,
    cls: DanceClass,
    tenant: Tenant,
    until: datetime,
    now: datetime | None = None,
) -> int:
    """Create the missing future instances of a class. Safe to re-run."""
    now = now or utcnow()
    wanted = occurrences(cls, tenant.timezone, now, until)
    if not wanted:
        return 0

    result = await session.execute(
        select(ClassInstance.start).where(
            ClassInstance.class_id == cls.id,
            ClassInstance.start >= wanted[0][0],
            ClassInstance.start <= wanted[-1][0],
        )
    )
    existing = set(result.scalars().all())

    created = 0
    for start, end in wanted:
        if start in existing:
            continue
        session.add(ClassInstance(
            tenant_id=cls.tenant_id,
            class_id=cls.id,
            start=start,
            end=end,
            capacity=cls.capacity,
        ))
        created += 1
    await session.commit()
    if created:
        logger.info("Generated %d instances for class %s (%s)", created, cls.id, cls.title)
    return created


async def generate_all_instances(
    session: AsyncSession, horizon_days: int, now: datetime | None = None
) -> int:
    """Materialize instances for every active class of every active tenant."""
    now = now or utcnow()
    until = now + timedelta(days=horizon_days)
    stmt = (
        select(DanceClass, Tenant)
        .join(Tenant, Tenant.id == DanceClass.tenant_id)
        .where(
            DanceClass.is_active.is_(True),  # type: ignore[union-attr]
            Tenant.status == TenantStatus.ACTIVE,
        )
    )
    rows = (await session.execute(stmt)).all()

    total = 0
    for cls, tenant in rows:
        try:
            total += await materialize_instances(session, cls, tenant, until, now)
        except ScheduleError as exc:
            logger.warning("Skipping class %s: %s", cls.id, exc)
    logger.info("Instance generation: %d new instances for %d classes", total, len(rows))
    return total


def duplicate_instances(
    instances: list[ClassInstance],
) -> list[tuple[ClassInstance, ClassInstance]]:
    """(duplicate, keeper) pairs among instances sharing class and start.

    The keeper is the copy with the most bookings.
    """
    groups: dict[tuple[uuid.UUID, datetime], list[ClassInstance]] = defaultdict(list)
    for inst in instances:
        groups[(inst.class_id, inst.start)].append(inst)
    pairs = []
    for group in groups.values():
        if len(group) < 2:
            continue
        keeper = max(group, key=lambda i: i.booking_count)
        pairs.extend((inst, keeper) for inst in group if inst.id != keeper.id)
    return pairs


async def dedupe_instances(session: AsyncSession, tenant_id: uuid.UUID) -> int:
    """Collapse instances sharing (class, start) into one; returns rows removed."""
    result = await session.execute(
        select(ClassInstance)
        .where(ClassInstance.tenant_id == tenant_id)
        .order_by(ClassInstance.created_at.asc())  # type: ignore[union-attr]
    )
    removed = 0
    for dup, keeper in duplicate_instances(list(result.scalars().all())):
        await _merge_bookings(session, dup, keeper)
        await session.delete(dup)
        removed += 1
    await session.commit()
    if removed:
        logger.info("Removed %d duplicate instances for tenant %s", removed, tenant_id)
    return removed


async def _merge_bookings(
    session: AsyncSession, dup: ClassInstance, keeper: ClassInstance
) -> None:
    kept = await session.execute(select(Booking).where(Booking.instance_id == keeper.id))
    keeper_bookings = {b.user_id: b for b in kept.scalars().all()}

    result = await session.execute(select(Booking).where(Booking.instance_id == dup.id))
    for booking in result.scalars().all():
        existing = keeper_bookings.get(booking.user_id)
        if existing is None:
            booking.instance_id = keeper.id
            booking.updated_at = utcnow()
            session.add(booking)
            keeper_bookings[booking.user_id] = booking
            if booking.status == BookingStatus.CONFIRMED:
                keeper.booking_count += 1
            continue
        if existing.status != BookingStatus.CONFIRMED and booking.status == BookingStatus.CONFIRMED:
            # The live booking takes over the cancelled row on the keeper.
            existing.status = BookingStatus.CONFIRMED
            existing.subscription_id = booking.subscription_id
            existing.booking_type = booking.booking_type
            existing.clip_refunded = booking.clip_refunded
            existing.updated_at = utcnow()
            session.add(existing)
            keeper.booking_count += 1
            await session.delete(booking)
            continue
        # Double-booked the same slot: drop the copy, give the clip back.
        if booking.status == BookingStatus.CONFIRMED and not booking.clip_refunded:
            sub = await session.get(Subscription, booking.subscription_id)
            if sub is not None:
                refund_clip(sub)
                session.add(sub)
        await session.delete(booking)
    keeper.updated_at = utcnow()
    session.add(keeper)
    await session.flush()
