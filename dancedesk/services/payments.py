"""Payment flows: start checkouts, apply Stripe events and Vipps callbacks."""

from __future__ import annotations

import logging
import time
import uuid
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from dancedesk.models.base import new_uuid, utcnow
from dancedesk.models.checkout import Checkout, CheckoutCreate, CheckoutStatus
from dancedesk.models.dance_pass import Pass
from dancedesk.models.provider_event import EventProvider, EventStatus
from dancedesk.models.subscription import PaymentProvider, SubscriptionOrigin
from dancedesk.models.tenant import ConnectStatus, Tenant
from dancedesk.models.user import User
from dancedesk.services import stripe_api, vipps_api
from dancedesk.services.errors import PurchaseError
from dancedesk.services.ledger import close_event, open_event
from dancedesk.services.passes import compute_end_date, initial_clips, is_purchasable
from dancedesk.services.subscriptions import Purchase, record_purchase
from dancedesk.services.vipps_api import (
    VippsPaymentStatus,
    map_vipps_status,
    transaction_status,
)

logger = logging.getLogger(__name__)

PASS_PURCHASE = "pass_purchase"
PURCHASE_EVENTS = frozenset({
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
})
EXPIRED_EVENT = "checkout.session.expired"
REQUIRED_METADATA = ("passId", "userId", "tenantId")


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def vipps_order_id(checkout_id: uuid.UUID) -> str:
    return f"dd-{checkout_id.hex[:24]}"


# ── Stripe ────────────────────────────────────────────────────

def is_paid_pass_purchase(checkout_session: dict) -> bool:
    metadata = checkout_session.get("metadata") or {}
    return (
        metadata.get("type") == PASS_PURCHASE
        and checkout_session.get("payment_status") == "paid"
    )


def purchase_from_checkout_session(
    checkout_session: dict,
    origin: SubscriptionOrigin = SubscriptionOrigin.WEBHOOK,
) -> Purchase:
    """Translate a paid Stripe checkout session into a Purchase."""
    metadata = checkout_session.get("metadata") or {}
    missing = [key for key in REQUIRED_METADATA if not metadata.get(key)]
    if missing:
        raise PurchaseError(f"Missing metadata: {', '.join(missing)}")
    try:
        tenant_id = uuid.UUID(metadata["tenantId"])
        pass_id = uuid.UUID(metadata["passId"])
    except ValueError:
        raise PurchaseError("Malformed tenantId or passId in metadata") from None

    created = checkout_session.get("created")
    purchased_at = (
        datetime.fromtimestamp(created, UTC).replace(tzinfo=None) if created else utcnow()
    )
    payment_intent = checkout_session.get("payment_intent")
    if isinstance(payment_intent, dict):
        payment_intent = payment_intent.get("id")
    amount_total = checkout_session.get("amount_total")
    customer = checkout_session.get("customer_details") or {}

    return Purchase(
        tenant_id=tenant_id,
        pass_id=pass_id,
        provider=PaymentProvider.STRIPE,
        purchased_at=purchased_at,
        auth_subject=metadata["userId"],
        amount_paid=amount_total / 100 if amount_total is not None else None,
        stripe_session_id=checkout_session.get("id"),
        stripe_payment_id=payment_intent,
        customer_email=metadata.get("userEmail") or customer.get("email") or "",
        customer_name=customer.get("name") or "",
        origin=origin,
    )


async def _checkout_by_reference(
    session: AsyncSession, provider: PaymentProvider, reference: str | None
) -> Checkout | None:
    if not reference:
        return None
    result = await session.execute(
        select(Checkout).where(
            Checkout.provider == provider,
            Checkout.provider_reference == reference,
        )
    )
    return result.scalar_one_or_none()


async def _fail_checkout(session: AsyncSession, checkout: Checkout) -> None:
    if checkout.status != CheckoutStatus.PENDING:
        return
    checkout.status = CheckoutStatus.FAILED
    checkout.updated_at = utcnow()
    session.add(checkout)
    await session.commit()
    logger.info("Checkout %s (%s) failed", checkout.id, checkout.provider_reference)


async def _apply_stripe_event(
    session: AsyncSession, event_type: str, obj: dict
) -> tuple[EventStatus, dict]:
    details: dict = {"session_id": obj.get("id")}
    if event_type in PURCHASE_EVENTS:
        if not is_paid_pass_purchase(obj):
            details["reason"] = "not a paid pass purchase"
            return EventStatus.IGNORED, details
        purchase = purchase_from_checkout_session(obj)
        details["tenant_id"] = str(purchase.tenant_id)
        sub, created = await record_purchase(session, purchase)
        details.update(subscription_id=str(sub.id), created=created)
        return EventStatus.SUCCESS, details

    if event_type == EXPIRED_EVENT:
        checkout = await _checkout_by_reference(session, PaymentProvider.STRIPE, obj.get("id"))
        if checkout is None:
            details["reason"] = "no matching checkout"
            return EventStatus.IGNORED, details
        details["tenant_id"] = str(checkout.tenant_id)
        await _fail_checkout(session, checkout)
        return EventStatus.SUCCESS, details

    details["reason"] = "unhandled event type"
    return EventStatus.IGNORED, details


async def process_stripe_event(session: AsyncSession, event: dict) -> EventStatus | None:
    """Apply one verified Stripe event at most once.

    Returns the final ledger status, or None for an event that was already
    handled. Permanent problems (bad metadata, unknown pass) are recorded
    as ``error`` and returned; anything else is recorded and re-raised so
    Stripe retries the delivery.
    """
    event_id = event.get("id")
    if not event_id:
        raise PurchaseError("Event has no id")
    event_type = event.get("type", "")
    obj = (event.get("data") or {}).get("object") or {}

    ledger_id = await open_event(session, EventProvider.STRIPE, event_id, event_type)
    if ledger_id is None:
        return None

    started = time.monotonic()
    try:
        status, details = await _apply_stripe_event(session, event_type, obj)
    except PurchaseError as exc:
        await session.rollback()
        logger.warning("Stripe event %s cannot be applied: %s", event_id, exc)
        await close_event(
            session, ledger_id, EventStatus.ERROR,
            details={"session_id": obj.get("id")}, error=str(exc), started=started,
        )
        return EventStatus.ERROR
    except Exception as exc:
        await session.rollback()
        logger.exception("Failed to process Stripe event %s", event_id)
        await close_event(
            session, ledger_id, EventStatus.ERROR,
            details={"session_id": obj.get("id")},
            error=str(exc) or type(exc).__name__,
            started=started,
        )
        raise

    tenant_id = uuid.UUID(details["tenant_id"]) if details.get("tenant_id") else None
    await close_event(
        session, ledger_id, status, details=details, tenant_id=tenant_id, started=started,
    )
    logger.info("Stripe event %s (%s) → %s", event_id, event_type, status)
    return status


# ── Vipps ─────────────────────────────────────────────────────

async def sync_vipps_checkout(
    session: AsyncSession,
    checkout: Checkout,
    origin: SubscriptionOrigin = SubscriptionOrigin.WEBHOOK,
    details: dict | None = None,
) -> tuple[VippsPaymentStatus, str | None]:
    """Apply the Vipps payment state to the checkout, fetching it unless given.

    Returns the mapped status and the raw Vipps status.
    """
    if details is None:
        details = await vipps_api.get_payment_details(checkout.provider_reference)
    raw_status, transaction_id, amount = transaction_status(details)
    status = map_vipps_status(raw_status)

    if status == VippsPaymentStatus.COMPLETED:
        purchase = Purchase(
            tenant_id=checkout.tenant_id,
            pass_id=checkout.pass_id,
            provider=PaymentProvider.VIPPS,
            purchased_at=utcnow(),
            user_id=checkout.user_id,
            amount_paid=(amount if amount is not None else checkout.amount) / 100,
            vipps_order_id=checkout.provider_reference,
            origin=origin,
        )
        sub, created = await record_purchase(session, purchase)
        logger.info(
            "Vipps order %s (transaction %s) → subscription %s (created=%s)",
            checkout.provider_reference, transaction_id, sub.id, created,
        )
    elif status == VippsPaymentStatus.FAILED:
        await _fail_checkout(session, checkout)
    return status, raw_status


async def process_vipps_callback(
    session: AsyncSession, order_id: str
) -> VippsPaymentStatus | None:
    """Handle a Vipps callback; the body is ignored and the API is asked instead."""
    checkout = await _checkout_by_reference(session, PaymentProvider.VIPPS, order_id)
    if checkout is None:
        raise PurchaseError(f"Unknown Vipps order {order_id}")
    tenant_id = checkout.tenant_id

    details = await vipps_api.get_payment_details(order_id)
    raw_status, _, _ = transaction_status(details)
    # One ledger row per order and state: Vipps calls back on reserve and capture.
    event_id = f"{order_id}:{(raw_status or 'UNKNOWN').upper()}"
    ledger_id = await open_event(
        session, EventProvider.VIPPS, event_id, f"payment.{map_vipps_status(raw_status)}",
    )
    if ledger_id is None:
        return None

    started = time.monotonic()
    try:
        status, raw_status = await sync_vipps_checkout(session, checkout, details=details)
    except Exception as exc:
        await session.rollback()
        logger.exception("Failed to process Vipps callback for %s", order_id)
        await close_event(
            session, ledger_id, EventStatus.ERROR,
            details={"order_id": order_id},
            error=str(exc) or type(exc).__name__,
            tenant_id=tenant_id,
            started=started,
        )
        raise

    await close_event(
        session,
        ledger_id,
        EventStatus.IGNORED if status == VippsPaymentStatus.PENDING else EventStatus.SUCCESS,
        details={"order_id": order_id, "vipps_status": raw_status, "status": status},
        tenant_id=tenant_id,
        started=started,
    )
    return status


# ── Checkout ──────────────────────────────────────────────────

async def create_checkout(
    session: AsyncSession,
    tenant: Tenant,
    user: User,
    data: CheckoutCreate,
    now: datetime | None = None,
) -> Checkout:
    """Start a purchase of a pass at the payment provider."""
    now = now or utcnow()
    if not user.is_active or user.tenant_id != tenant.id:
        raise PurchaseError("User cannot purchase at this school")

    dance_pass = await session.get(Pass, data.pass_id)
    if dance_pass is None or dance_pass.tenant_id != tenant.id:
        raise PurchaseError("Pass not found")
    if not is_purchasable(dance_pass, now):
        raise PurchaseError("Pass is not available for purchase")
    # Refuse money for a pass that could not become a subscription.
    initial_clips(dance_pass)
    compute_end_date(dance_pass, now)

    checkout = Checkout(
        id=new_uuid(),
        tenant_id=tenant.id,
        user_id=user.id,
        pass_id=dance_pass.id,
        provider=data.provider,
        provider_reference="",
        amount=to_minor_units(dance_pass.price),
        currency=tenant.currency,
    )

    if data.provider == PaymentProvider.STRIPE:
        destination = (
            tenant.stripe_account_id
            if tenant.stripe_account_status == ConnectStatus.ACTIVE
            else None
        )
        stripe_session = await stripe_api.create_checkout_session(
            name=dance_pass.name,
            description=dance_pass.description,
            amount=checkout.amount,
            currency=tenant.currency,
            metadata={
                "type": PASS_PURCHASE,
                "passId": str(dance_pass.id),
                "userId": user.auth_subject,
                "tenantId": str(tenant.id),
                "userEmail": user.email,
            },
            success_url=data.success_url,
            cancel_url=data.cancel_url,
            customer_email=user.email,
            destination_account=destination,
        )
        checkout.provider_reference = stripe_session["id"]
        checkout.redirect_url = stripe_session.get("url") or ""
    elif data.provider == PaymentProvider.VIPPS:
        order_id = vipps_order_id(checkout.id)
        payment = await vipps_api.initiate_payment(
            order_id, checkout.amount, dance_pass.name, data.success_url,
        )
        checkout.provider_reference = order_id
        checkout.redirect_url = payment.get("url") or ""
    else:
        raise PurchaseError(f"Provider {data.provider} does not take online payments")

    session.add(checkout)
    await session.commit()
    await session.refresh(checkout)
    logger.info(
        "Started %s checkout %s for pass %s (user %s)",
        checkout.provider, checkout.provider_reference, dance_pass.id, user.id,
    )
    return checkout
