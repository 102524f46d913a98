"""Customer export: every subscription sold, with the buyer, as CSV or JSON."""

import csv
import io
from datetime import date, datetime, time, timedelta
from enum import StrEnum

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from sqlmodel import select

from dancedesk.api.deps import Auth, Session, require_admin
from dancedesk.models.base import utcnow
from dancedesk.models.subscription import Subscription, SubscriptionType
from dancedesk.models.user import User

router = APIRouter(prefix="/export", tags=["export"])

CSV_COLUMNS = [
    "email", "name", "pass_name", "pass_type", "purchased_at", "start_date",
    "end_date", "status", "remaining_clips", "amount_paid", "payment_provider",
    "stripe_session_id", "vipps_order_id", "remaining_days",
]


class StatusFilter(StrEnum):
    ALL = "all"
    ACTIVE = "active"
    EXPIRED = "expired"


def subscription_status(sub: Subscription, now: datetime) -> str:
    if sub.end_date <= now:
        return "expired"
    return "active" if sub.is_active else "inactive"


def customer_row(sub: Subscription, user: User | None, now: datetime) -> dict:
    return {
        "email": user.email if user else "",
        "name": user.name if user else "",
        "pass_name": sub.pass_name,
        "pass_type": str(sub.type),
        "purchased_at": sub.created_at.isoformat(),
        "start_date": sub.start_date.isoformat(),
        "end_date": sub.end_date.isoformat(),
        "status": subscription_status(sub, now),
        "remaining_clips": sub.remaining_clips,
        "amount_paid": sub.purchase_price,
        "payment_provider": str(sub.payment_provider),
        "stripe_session_id": sub.stripe_session_id or "",
        "vipps_order_id": sub.vipps_order_id or "",
        "remaining_days": max((sub.end_date - now).days, 0),
    }


@router.get("/customers")
async def export_customers(
    auth: Auth,
    session: Session,
    status_filter: StatusFilter = Query(StatusFilter.ALL, alias="status"),
    pass_type: SubscriptionType | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
    format: str = "csv",
):
    """Subscriptions of this school, newest purchase first.

    ``active`` means usable today; ``expired`` covers both lapsed and
    deactivated subscriptions. Dates filter on the purchase day.
    """
    require_admin(auth)
    now = utcnow()

    stmt = (
        select(Subscription, User)
        .join(User, User.id == Subscription.user_id, isouter=True)
        .where(Subscription.tenant_id == auth.tenant_id)
    )
    if status_filter == StatusFilter.ACTIVE:
        stmt = stmt.where(
            Subscription.is_active.is_(True),  # type: ignore[union-attr]
            Subscription.end_date > now,
        )
    elif status_filter == StatusFilter.EXPIRED:
        stmt = stmt.where(
            (Subscription.is_active.is_(False)) | (Subscription.end_date <= now)  # type: ignore[union-attr]
        )
    if pass_type is not None:
        stmt = stmt.where(Subscription.type == pass_type)
    try:
        if from_date:
            stmt = stmt.where(Subscription.created_at >= _day_start(from_date))
        if to_date:
            # Include the full to_date day
            end = _day_start(to_date) + timedelta(days=1)
            stmt = stmt.where(Subscription.created_at < end)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"Invalid date: {exc}",
        ) from exc
    stmt = stmt.order_by(Subscription.created_at.desc())  # type: ignore[union-attr]

    result = await session.execute(stmt)
    rows = [customer_row(sub, user, now) for sub, user in result.all()]

    if format == "csv":
        return _customers_csv(rows, now)
    return {"customers": rows, "count": len(rows), "exported_at": now.isoformat()}


def _day_start(value: str) -> datetime:
    return datetime.combine(date.fromisoformat(value), time.min)


def _customers_csv(rows: list[dict], now: datetime) -> StreamingResponse:
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=CSV_COLUMNS)
    writer.writeheader()
    writer.writerows(rows)
    output.seek(0)
    filename = f"customers-export-{now.date().isoformat()}.csv"
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
