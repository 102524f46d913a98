"""Subscriptions: students see their own, admins see and adjust all."""

import uuid

from fastapi import APIRouter, HTTPException, status
from sqlmodel import select

from dancedesk.api.deps import Auth, Session, require_admin
from dancedesk.models.base import utcnow
from dancedesk.models.subscription import (
    Subscription,
    SubscriptionGrant,
    SubscriptionRead,
    SubscriptionUpdate,
)
from dancedesk.services.errors import PassConfigurationError, PurchaseError
from dancedesk.services.subscriptions import active_subscriptions, grant_subscription, is_usable

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.get("/me", response_model=list[SubscriptionRead])
async def my_subscriptions(auth: Auth, session: Session) -> list[SubscriptionRead]:
    """The caller's currently usable passes, soonest expiry first."""
    now = utcnow()
    subs = await active_subscriptions(session, auth.user_id, auth.tenant_id, now)
    return [SubscriptionRead.model_validate(s) for s in subs if is_usable(s, now)]


@router.get("", response_model=list[SubscriptionRead])
async def list_subscriptions(
    auth: Auth,
    session: Session,
    user_id: uuid.UUID | None = None,
    active_only: bool = False,
) -> list[SubscriptionRead]:
    stmt = select(Subscription).where(Subscription.tenant_id == auth.tenant_id)
    if not auth.is_admin:
        stmt = stmt.where(Subscription.user_id == auth.user_id)
    elif user_id is not None:
        stmt = stmt.where(Subscription.user_id == user_id)
    if active_only:
        stmt = stmt.where(Subscription.is_active.is_(True))  # type: ignore[union-attr]
    stmt = stmt.order_by(Subscription.created_at.desc())  # type: ignore[union-attr]
    result = await session.execute(stmt)
    return [SubscriptionRead.model_validate(s) for s in result.scalars().all()]


@router.post("", response_model=SubscriptionRead, status_code=status.HTTP_201_CREATED)
async def grant(
    body: SubscriptionGrant,
    auth: Auth,
    session: Session,
) -> SubscriptionRead:
    """Create a subscription by hand, e.g. for a cash payment at the desk."""
    require_admin(auth)
    try:
        sub = await grant_subscription(session, auth.tenant_id, body)
    except PurchaseError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PassConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc),
        ) from exc
    return SubscriptionRead.model_validate(sub)


@router.get("/{subscription_id}", response_model=SubscriptionRead)
async def get_subscription(
    subscription_id: uuid.UUID,
    auth: Auth,
    session: Session,
) -> SubscriptionRead:
    sub = await _get_or_404(subscription_id, auth, session)
    return SubscriptionRead.model_validate(sub)


@router.patch("/{subscription_id}", response_model=SubscriptionRead)
async def update_subscription(
    subscription_id: uuid.UUID,
    body: SubscriptionUpdate,
    auth: Auth,
    session: Session,
) -> SubscriptionRead:
    require_admin(auth)
    sub = await _get_or_404(subscription_id, auth, session)

    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(sub, field, value)

    sub.updated_at = utcnow()
    session.add(sub)
    await session.commit()
    await session.refresh(sub)
    return SubscriptionRead.model_validate(sub)


# ── Internal helper ───────────────────────────────────────────

async def _get_or_404(subscription_id: uuid.UUID, auth, session) -> Subscription:
    stmt = select(Subscription).where(
        Subscription.id == subscription_id,
        Subscription.tenant_id == auth.tenant_id,
    )
    if not auth.is_admin:
        stmt = stmt.where(Subscription.user_id == auth.user_id)
    result = await session.execute(stmt)
    sub = result.scalar_one_or_none()
    if sub is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")
    return sub
