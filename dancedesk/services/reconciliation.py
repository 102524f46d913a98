"""Re-derive subscriptions from the payment providers' own records.

Webhooks can be lost (endpoint down, misconfigured secret, deploy at the
wrong moment). These jobs walk recent paid sessions at the provider and
feed them through the same retry-safe upsert the webhooks use, so a run
only ever creates what is missing.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from dancedesk.core.config import get_settings
from dancedesk.models.base import utcnow
from dancedesk.models.checkout import Checkout, CheckoutStatus
from dancedesk.models.subscription import PaymentProvider, SubscriptionOrigin
from dancedesk.services import stripe_api
from dancedesk.services.errors import DanceDeskError, ProviderError
from dancedesk.services.payments import (
    is_paid_pass_purchase,
    purchase_from_checkout_session,
    sync_vipps_checkout,
)
from dancedesk.services.subscriptions import record_purchase
from dancedesk.services.vipps_api import VippsPaymentStatus

logger = logging.getLogger(__name__)

VIPPS_MIN_AGE = timedelta(minutes=2)


async def reconcile_stripe(
    session: AsyncSession,
    since: datetime | None = None,
    now: datetime | None = None,
    tenant_id: uuid.UUID | None = None,
) -> dict[str, int]:
    """Create missing subscriptions for paid Stripe sessions since ``since``.

    With ``tenant_id`` only that school's sessions are considered.
    """
    now = now or utcnow()
    if since is None:
        since = now - timedelta(days=get_settings().reconcile_lookback_days)
    created_gte = int(since.replace(tzinfo=UTC).timestamp())

    counts = {"examined": 0, "created": 0, "existing": 0, "failed": 0}
    async for checkout_session in stripe_api.iter_checkout_sessions(created_gte):
        if checkout_session.get("status") != "complete":
            continue
        if not is_paid_pass_purchase(checkout_session):
            continue
        metadata = checkout_session.get("metadata") or {}
        if tenant_id is not None and metadata.get("tenantId") != str(tenant_id):
            continue
        counts["examined"] += 1
        try:
            purchase = purchase_from_checkout_session(
                checkout_session, SubscriptionOrigin.RECONCILIATION,
            )
            sub, created = await record_purchase(session, purchase)
        except (DanceDeskError, SQLAlchemyError) as exc:
            await session.rollback()
            logger.warning(
                "Reconciliation failed for Stripe session %s: %s",
                checkout_session.get("id"), exc,
            )
            counts["failed"] += 1
            continue
        if created:
            logger.info(
                "Reconciled missing subscription %s from Stripe session %s",
                sub.id, checkout_session.get("id"),
            )
            counts["created"] += 1
        else:
            counts["existing"] += 1

    logger.info("Stripe reconciliation since %s: %s", since.isoformat(), counts)
    return counts


async def reconcile_vipps(
    session: AsyncSession,
    now: datetime | None = None,
    tenant_id: uuid.UUID | None = None,
) -> dict[str, int]:
    """Re-query pending Vipps checkouts that never got a usable callback."""
    now = now or utcnow()
    oldest = now - timedelta(days=get_settings().reconcile_lookback_days)
    stmt = select(Checkout.id).where(
        Checkout.provider == PaymentProvider.VIPPS,
        Checkout.status == CheckoutStatus.PENDING,
        Checkout.created_at <= now - VIPPS_MIN_AGE,
        Checkout.created_at >= oldest,
    )
    if tenant_id is not None:
        stmt = stmt.where(Checkout.tenant_id == tenant_id)
    result = await session.execute(stmt)
    checkout_ids = list(result.scalars().all())

    counts = {"examined": 0, "completed": 0, "cancelled": 0, "pending": 0, "failed": 0}
    for checkout_id in checkout_ids:
        checkout = await session.get(Checkout, checkout_id)
        if checkout is None:
            continue
        counts["examined"] += 1
        try:
            status, _ = await sync_vipps_checkout(
                session, checkout, origin=SubscriptionOrigin.RECONCILIATION,
            )
        except (DanceDeskError, SQLAlchemyError) as exc:
            await session.rollback()
            logger.warning("Reconciliation failed for Vipps checkout %s: %s", checkout_id, exc)
            counts["failed"] += 1
            continue
        if status == VippsPaymentStatus.COMPLETED:
            counts["completed"] += 1
        elif status == VippsPaymentStatus.FAILED:
            counts["cancelled"] += 1
        else:
            counts["pending"] += 1

    if counts["examined"]:
        logger.info("Vipps reconciliation: %s", counts)
    return counts


async def reconcile_all(
    session: AsyncSession,
    now: datetime | None = None,
    tenant_id: uuid.UUID | None = None,
) -> dict:
    """Both providers, each on its own so an outage at one does not stop the other.

    A provider that is not configured is skipped.
    """
    settings = get_settings()
    report: dict = {}
    if settings.stripe_secret_key:
        try:
            report["stripe"] = await reconcile_stripe(session, now=now, tenant_id=tenant_id)
        except ProviderError as exc:
            logger.error("Stripe reconciliation aborted: %s", exc)
            report["stripe"] = {"error": str(exc)}
    if settings.vipps_client_id:
        try:
            report["vipps"] = await reconcile_vipps(session, now=now, tenant_id=tenant_id)
        except ProviderError as exc:
            logger.error("Vipps reconciliation aborted: %s", exc)
            report["vipps"] = {"error": str(exc)}
    return report
