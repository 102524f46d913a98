"""School statistics: headline counts and revenue per day."""

from datetime import timedelta

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import func
from sqlmodel import select

from dancedesk.api.deps import Auth, Session, require_admin
from dancedesk.core import cache
from dancedesk.models.base import utcnow
from dancedesk.models.booking import Booking, BookingStatus
from dancedesk.models.class_instance import ClassInstance
from dancedesk.models.subscription import Subscription
from dancedesk.models.user import User, UserRole

router = APIRouter(prefix="/stats", tags=["stats"])


# ── Schemas ──────────────────────────────────────────────────

class OverviewStats(BaseModel):
    students: int
    pending_students: int
    active_subscriptions: int
    upcoming_instances: int
    confirmed_bookings: int
    revenue_30d: float


class DailyRevenue(BaseModel):
    date: str
    provider: str
    subscriptions: int
    revenue: float


# ── Routes ───────────────────────────────────────────────────

@router.get("/overview", response_model=OverviewStats)
async def get_overview(auth: Auth, session: Session) -> OverviewStats:
    """Summary counts for the school dashboard."""
    require_admin(auth)
    tid = auth.tenant_id
    cached = cache.get(tid, "overview")
    if cached is not None:
        return cached

    now = utcnow()
    role_counts = dict((await session.execute(
        select(User.role, func.count())
        .where(User.tenant_id == tid)
        .group_by(User.role)
    )).all())

    active_subs = (await session.execute(
        select(func.count()).select_from(Subscription).where(
            Subscription.tenant_id == tid,
            Subscription.is_active.is_(True),  # type: ignore[union-attr]
            Subscription.end_date > now,
        )
    )).scalar_one()

    upcoming = (await session.execute(
        select(func.count()).select_from(ClassInstance).where(
            ClassInstance.tenant_id == tid,
            ClassInstance.start >= now,
            ClassInstance.is_cancelled.is_(False),  # type: ignore[union-attr]
        )
    )).scalar_one()

    bookings = (await session.execute(
        select(func.count()).select_from(Booking)
        .join(ClassInstance, ClassInstance.id == Booking.instance_id)
        .where(
            Booking.tenant_id == tid,
            Booking.status == BookingStatus.CONFIRMED,
            ClassInstance.start >= now,
        )
    )).scalar_one()

    revenue = (await session.execute(
        select(func.coalesce(func.sum(Subscription.purchase_price), 0.0)).where(
            Subscription.tenant_id == tid,
            Subscription.created_at >= now - timedelta(days=30),
        )
    )).scalar_one()

    result = OverviewStats(
        students=role_counts.get(UserRole.STUDENT, 0),
        pending_students=role_counts.get(UserRole.PENDING, 0),
        active_subscriptions=active_subs,
        upcoming_instances=upcoming,
        confirmed_bookings=bookings,
        revenue_30d=float(revenue),
    )
    cache.put(tid, "overview", result)
    return result


@router.get("/revenue", response_model=list[DailyRevenue])
async def get_revenue(
    auth: Auth,
    session: Session,
    days: int = 30,
) -> list[DailyRevenue]:
    """Subscriptions sold and revenue per day and payment provider."""
    require_admin(auth)
    since = utcnow() - timedelta(days=max(days, 1))
    day = func.date(Subscription.created_at)
    stmt = (
        select(
            day.label("day"),
            Subscription.payment_provider,
            func.count(),
            func.coalesce(func.sum(Subscription.purchase_price), 0.0),
        )
        .where(
            Subscription.tenant_id == auth.tenant_id,
            Subscription.created_at >= since,
        )
        .group_by(day, Subscription.payment_provider)
        .order_by(day)
    )
    rows = (await session.execute(stmt)).all()
    return [
        DailyRevenue(
            date=str(row[0]),
            provider=str(row[1]),
            subscriptions=row[2],
            revenue=float(row[3]),
        )
        for row in rows
    ]
