"""Payments: start checkouts and receive Stripe / Vipps notifications."""

import hmac
import json
import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Header, HTTPException, Request, status
from pydantic import BaseModel
from sqlmodel import select

from dancedesk.api.deps import Auth, Session
from dancedesk.core.config import get_settings
from dancedesk.models.checkout import Checkout, CheckoutCreate, CheckoutRead, CheckoutStatus
from dancedesk.models.subscription import PaymentProvider
from dancedesk.models.tenant import Tenant
from dancedesk.models.user import User
from dancedesk.services.errors import (
    PassConfigurationError,
    ProviderError,
    PurchaseError,
    SignatureError,
)
from dancedesk.services.payments import (
    create_checkout,
    process_stripe_event,
    process_vipps_callback,
    sync_vipps_checkout,
)
from dancedesk.services.signatures import verify_stripe_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


class WebhookAck(BaseModel):
    received: bool = True
    status: str


# ── Checkout ──────────────────────────────────────────────────

@router.post("/checkout", response_model=CheckoutRead, status_code=status.HTTP_201_CREATED)
async def start_checkout(
    body: CheckoutCreate,
    auth: Auth,
    session: Session,
) -> CheckoutRead:
    """Create a provider payment for a pass and return where to send the buyer."""
    tenant = await session.get(Tenant, auth.tenant_id)
    user = await session.get(User, auth.user_id)
    try:
        checkout = await create_checkout(session, tenant, user, body)
    except PurchaseError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except PassConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc),
        ) from exc
    except ProviderError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return CheckoutRead.model_validate(checkout)


@router.get("/checkouts", response_model=list[CheckoutRead])
async def list_checkouts(
    auth: Auth,
    session: Session,
    checkout_status: CheckoutStatus | None = None,
) -> list[CheckoutRead]:
    stmt = select(Checkout).where(Checkout.tenant_id == auth.tenant_id)
    if not auth.is_admin:
        stmt = stmt.where(Checkout.user_id == auth.user_id)
    if checkout_status is not None:
        stmt = stmt.where(Checkout.status == checkout_status)
    stmt = stmt.order_by(Checkout.created_at.desc())  # type: ignore[union-attr]
    result = await session.execute(stmt)
    return [CheckoutRead.model_validate(c) for c in result.scalars().all()]


@router.post("/checkouts/{checkout_id}/refresh", response_model=CheckoutRead)
async def refresh_checkout(
    checkout_id: uuid.UUID,
    auth: Auth,
    session: Session,
) -> CheckoutRead:
    """Ask Vipps for the payment state now, e.g. when the buyer returns."""
    stmt = select(Checkout).where(
        Checkout.id == checkout_id,
        Checkout.tenant_id == auth.tenant_id,
    )
    if not auth.is_admin:
        stmt = stmt.where(Checkout.user_id == auth.user_id)
    checkout = (await session.execute(stmt)).scalar_one_or_none()
    if checkout is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Checkout not found")
    if checkout.provider != PaymentProvider.VIPPS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only Vipps checkouts can be refreshed",
        )

    if checkout.status == CheckoutStatus.PENDING:
        try:
            await sync_vipps_checkout(session, checkout)
        except ProviderError as exc:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
        await session.refresh(checkout)
    return CheckoutRead.model_validate(checkout)


# ── Provider notifications ────────────────────────────────────

@router.post("/stripe/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    session: Session,
    stripe_signature: Annotated[str | None, Header()] = None,
) -> WebhookAck:
    """Stripe event endpoint. Answers 200 unless a retry could help."""
    settings = get_settings()
    payload = await request.body()
    try:
        verify_stripe_signature(
            payload,
            stripe_signature,
            settings.stripe_webhook_secret,
            tolerance=settings.webhook_tolerance_seconds,
        )
    except SignatureError as exc:
        logger.warning("Rejected Stripe webhook: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Webhook signature verification failed: {exc}",
        ) from exc

    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload",
        ) from None

    try:
        result = await process_stripe_event(session, event)
    except PurchaseError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc
    return WebhookAck(status=result or "duplicate")


@router.post(
    "/vipps/callback/v2/payments/{order_id}",
    response_model=WebhookAck,
)
async def vipps_callback(
    order_id: str,
    session: Session,
    authorization: Annotated[str | None, Header()] = None,
) -> WebhookAck:
    """Vipps appends this path to the configured callback prefix."""
    expected = get_settings().vipps_callback_token
    if expected and not hmac.compare_digest(authorization or "", expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid callback token",
        )

    try:
        result = await process_vipps_callback(session, order_id)
    except PurchaseError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ProviderError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Callback processing failed",
        ) from exc
    return WebhookAck(status=result or "duplicate")
