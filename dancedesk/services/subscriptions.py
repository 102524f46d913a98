"""Subscription lifecycle: retry-safe purchase upsert, clips and expiry."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from dancedesk.core import cache
from dancedesk.models.base import utcnow
from dancedesk.models.checkout import Checkout, CheckoutStatus
from dancedesk.models.dance_pass import Pass
from dancedesk.models.subscription import (
    PaymentProvider,
    Subscription,
    SubscriptionGrant,
    SubscriptionOrigin,
    SubscriptionType,
)
from dancedesk.models.tenant import Tenant
from dancedesk.models.user import User, UserRole
from dancedesk.models.webhook import WebhookEvent
from dancedesk.services.errors import NoClipsRemaining, PurchaseError
from dancedesk.services.passes import compute_end_date, initial_clips, subscription_type_for
from dancedesk.services.webhook_dispatch import dispatch_webhook_event

logger = logging.getLogger(__name__)


@dataclass
class Purchase:
    """A confirmed payment for a pass, whichever way it reached us."""

    tenant_id: uuid.UUID
    pass_id: uuid.UUID
    provider: PaymentProvider
    purchased_at: datetime
    auth_subject: str | None = None
    user_id: uuid.UUID | None = None
    amount_paid: float | None = None  # major units; None → pass price
    stripe_session_id: str | None = None
    stripe_payment_id: str | None = None
    vipps_order_id: str | None = None
    customer_email: str = ""
    customer_name: str = ""
    origin: SubscriptionOrigin = SubscriptionOrigin.WEBHOOK


# ── Queries ───────────────────────────────────────────────────

async def find_existing(session: AsyncSession, purchase: Purchase) -> Subscription | None:
    """Look up a subscription already created for this payment."""
    clauses = []
    if purchase.stripe_session_id:
        clauses.append(Subscription.stripe_session_id == purchase.stripe_session_id)
    if purchase.stripe_payment_id:
        clauses.append(Subscription.stripe_payment_id == purchase.stripe_payment_id)
    if purchase.vipps_order_id:
        clauses.append(Subscription.vipps_order_id == purchase.vipps_order_id)
    if not clauses:
        return None
    result = await session.execute(select(Subscription).where(or_(*clauses)).limit(1))
    return result.scalar_one_or_none()


async def active_subscriptions(
    session: AsyncSession, user_id: uuid.UUID, tenant_id: uuid.UUID, now: datetime
) -> list[Subscription]:
    stmt = (
        select(Subscription)
        .where(
            Subscription.user_id == user_id,
            Subscription.tenant_id == tenant_id,
            Subscription.is_active.is_(True),  # type: ignore[union-attr]
            Subscription.start_date <= now,
            Subscription.end_date > now,
        )
        .order_by(Subscription.end_date.asc())  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ── Rules ─────────────────────────────────────────────────────

def is_usable(sub: Subscription, now: datetime) -> bool:
    if not sub.is_active or not (sub.start_date <= now < sub.end_date):
        return False
    return sub.remaining_clips is None or sub.remaining_clips > 0


def pick_subscription_for_booking(
    subs: list[Subscription], now: datetime
) -> Subscription | None:
    """Unlimited passes first, then the clip pass that expires soonest."""
    usable = [s for s in subs if is_usable(s, now)]
    for sub in usable:
        if sub.type == SubscriptionType.MONTHLY or sub.remaining_clips is None:
            return sub
    clip_based = sorted(usable, key=lambda s: s.end_date)
    return clip_based[0] if clip_based else None


async def consume_clip(session: AsyncSession, sub: Subscription) -> None:
    """Decrement remaining_clips atomically; unlimited passes are untouched."""
    if sub.remaining_clips is None:
        return
    result = await session.execute(
        update(Subscription)
        .where(Subscription.id == sub.id, Subscription.remaining_clips > 0)
        .values(remaining_clips=Subscription.remaining_clips - 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NoClipsRemaining(f"Subscription {sub.id} has no clips remaining")


def refund_clip(sub: Subscription) -> None:
    if sub.remaining_clips is None:
        return
    sub.remaining_clips += 1
    sub.updated_at = utcnow()


def build_subscription(
    dance_pass: Pass,
    user: User,
    start: datetime,
    price: float | None = None,
) -> Subscription:
    """A fresh subscription from the pass rules; raises PassConfigurationError."""
    return Subscription(
        tenant_id=dance_pass.tenant_id,
        user_id=user.id,
        pass_id=dance_pass.id,
        pass_name=dance_pass.name,
        type=subscription_type_for(dance_pass.type),
        start_date=start,
        end_date=compute_end_date(dance_pass, start),
        remaining_clips=initial_clips(dance_pass),
        purchase_price=dance_pass.price if price is None else price,
    )


# ── Purchase upsert ───────────────────────────────────────────

def _event_payload(sub: Subscription) -> dict:
    return {
        "subscription_id": str(sub.id),
        "user_id": str(sub.user_id),
        "pass_id": str(sub.pass_id),
        "pass_name": sub.pass_name,
        "end_date": sub.end_date.isoformat(),
        "remaining_clips": sub.remaining_clips,
        "origin": sub.origin,
    }


async def _resolve_customer(
    session: AsyncSession, tenant: Tenant, purchase: Purchase
) -> User:
    user: User | None = None
    if purchase.user_id is not None:
        user = await session.get(User, purchase.user_id)
    elif purchase.auth_subject:
        result = await session.execute(
            select(User).where(User.auth_subject == purchase.auth_subject)
        )
        user = result.scalar_one_or_none()

    if user is None:
        if not purchase.auth_subject:
            raise PurchaseError("Purchase has no customer identity")
        logger.info(
            "Creating user %s at tenant %s from payment", purchase.auth_subject, tenant.slug
        )
        user = User(
            auth_subject=purchase.auth_subject,
            tenant_id=tenant.id,
            email=purchase.customer_email,
            name=purchase.customer_name or "Customer",
            role=UserRole.STUDENT,
        )
        session.add(user)
        await session.flush()
    elif user.tenant_id is None:
        logger.info("Attaching tenant-less user %s to tenant %s", user.id, tenant.slug)
        user.tenant_id = tenant.id
        user.updated_at = utcnow()
        session.add(user)
    elif user.tenant_id != tenant.id:
        # Users belong to one school; the purchase still stands at the paying tenant.
        logger.warning(
            "User %s belongs to tenant %s but paid at tenant %s",
            user.id, user.tenant_id, tenant.id,
        )
    return user


async def record_purchase(
    session: AsyncSession, purchase: Purchase
) -> tuple[Subscription, bool]:
    """Create the subscription for a paid purchase exactly once.

    Returns ``(subscription, created)``. Redelivered webhooks, reconciliation
    runs and concurrent deliveries all resolve to the first subscription.
    """
    existing = await find_existing(session, purchase)
    if existing is not None:
        return existing, False

    tenant = await session.get(Tenant, purchase.tenant_id)
    if tenant is None:
        raise PurchaseError(f"Tenant {purchase.tenant_id} not found")

    dance_pass = await session.get(Pass, purchase.pass_id)
    if dance_pass is None or dance_pass.tenant_id != tenant.id:
        raise PurchaseError(f"Pass {purchase.pass_id} not found at tenant {tenant.slug}")
    if not dance_pass.is_active:
        logger.warning("Honouring purchase of inactive pass %s", dance_pass.id)

    user = await _resolve_customer(session, tenant, purchase)
    sub = build_subscription(dance_pass, user, purchase.purchased_at, purchase.amount_paid)
    sub.payment_provider = purchase.provider
    sub.stripe_session_id = purchase.stripe_session_id
    sub.stripe_payment_id = purchase.stripe_payment_id
    sub.vipps_order_id = purchase.vipps_order_id
    sub.origin = purchase.origin
    session.add(sub)

    try:
        await session.flush()
        await _complete_checkout(session, purchase, sub)
        await session.commit()
    except IntegrityError:
        # A concurrent delivery of the same payment won the insert.
        await session.rollback()
        existing = await find_existing(session, purchase)
        if existing is None:
            raise
        return existing, False

    await session.refresh(sub)
    logger.info(
        "Created %s subscription %s (%s) for user %s at tenant %s via %s",
        sub.type, sub.id, sub.pass_name, user.id, tenant.slug, purchase.origin,
    )
    cache.invalidate_tenant(tenant.id)
    await dispatch_webhook_event(
        session, tenant.id, WebhookEvent.SUBSCRIPTION_CREATED, _event_payload(sub)
    )
    return sub, True


async def _complete_checkout(
    session: AsyncSession, purchase: Purchase, sub: Subscription
) -> None:
    reference = purchase.stripe_session_id or purchase.vipps_order_id
    if not reference:
        return
    result = await session.execute(
        select(Checkout).where(
            Checkout.provider == purchase.provider,
            Checkout.provider_reference == reference,
        )
    )
    checkout = result.scalar_one_or_none()
    if checkout is not None:
        checkout.status = CheckoutStatus.COMPLETED
        checkout.subscription_id = sub.id
        checkout.updated_at = utcnow()
        session.add(checkout)


# ── Admin operations ──────────────────────────────────────────

async def grant_subscription(
    session: AsyncSession, tenant_id: uuid.UUID, grant: SubscriptionGrant
) -> Subscription:
    """Manually create a subscription for a payment taken outside the API."""
    user = await session.get(User, grant.user_id)
    if user is None or user.tenant_id != tenant_id:
        raise PurchaseError("User not found")
    dance_pass = await session.get(Pass, grant.pass_id)
    if dance_pass is None or dance_pass.tenant_id != tenant_id:
        raise PurchaseError("Pass not found")

    sub = build_subscription(dance_pass, user, grant.start_date or utcnow(), grant.purchase_price)
    sub.payment_provider = PaymentProvider.MANUAL
    sub.origin = SubscriptionOrigin.ADMIN
    session.add(sub)
    await session.commit()
    await session.refresh(sub)
    logger.info("Granted %s subscription %s to user %s", sub.type, sub.id, user.id)
    cache.invalidate_tenant(tenant_id)
    await dispatch_webhook_event(
        session, tenant_id, WebhookEvent.SUBSCRIPTION_CREATED, _event_payload(sub)
    )
    return sub


async def expire_subscriptions(session: AsyncSession, now: datetime | None = None) -> int:
    """Deactivate every active subscription whose end date has passed."""
    now = now or utcnow()
    stmt = (
        update(Subscription)
        .where(
            Subscription.is_active.is_(True),  # type: ignore[union-attr]
            Subscription.end_date <= now,
        )
        .values(is_active=False, updated_at=now)
    )
    result = await session.execute(stmt)
    await session.commit()
    count = result.rowcount or 0
    if count:
        logger.info("Expired %d subscriptions", count)
    return count
