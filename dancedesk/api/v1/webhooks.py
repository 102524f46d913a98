"""Outbound webhooks: schools subscribe URLs to booking and payment events."""

import secrets
import uuid

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel
from sqlmodel import select

from dancedesk.api.deps import Auth, Session, require_admin
from dancedesk.models.base import utcnow
from dancedesk.models.webhook import (
    Webhook,
    WebhookCreate,
    WebhookCreated,
    WebhookRead,
    WebhookUpdate,
)
from dancedesk.services.webhook_dispatch import record_delivery, send_webhook

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

TEST_EVENT = "test.ping"


class TestPingResponse(BaseModel):
    success: bool
    status_code: int | None = None


@router.post("", response_model=WebhookCreated, status_code=status.HTTP_201_CREATED)
async def create_webhook(body: WebhookCreate, auth: Auth, session: Session) -> WebhookCreated:
    """Register an endpoint. The signing secret is generated unless supplied."""
    require_admin(auth)
    wh = Webhook(
        tenant_id=auth.tenant_id,
        url=body.url,
        secret=body.secret or secrets.token_urlsafe(32),
        events=body.events,
        description=body.description,
    )
    session.add(wh)
    await session.commit()
    await session.refresh(wh)
    return WebhookCreated.model_validate(wh)


@router.get("", response_model=list[WebhookRead])
async def list_webhooks(auth: Auth, session: Session) -> list[Webhook]:
    require_admin(auth)
    result = await session.execute(
        select(Webhook)
        .where(Webhook.tenant_id == auth.tenant_id)
        .order_by(Webhook.created_at.desc())  # type: ignore[union-attr]
    )
    return list(result.scalars().all())


@router.get("/{webhook_id}", response_model=WebhookRead)
async def get_webhook(webhook_id: uuid.UUID, auth: Auth, session: Session) -> Webhook:
    require_admin(auth)
    return await _get_or_404(webhook_id, auth, session)


@router.patch("/{webhook_id}", response_model=WebhookRead)
async def update_webhook(
    webhook_id: uuid.UUID,
    body: WebhookUpdate,
    auth: Auth,
    session: Session,
) -> Webhook:
    """Change the target, the subscribed events, or pause delivery."""
    require_admin(auth)
    wh = await _get_or_404(webhook_id, auth, session)
    changes = body.model_dump(exclude_unset=True)
    for field, value in changes.items():
        if value is not None:
            setattr(wh, field, value)
    if changes.get("is_active"):
        # Re-enabling starts a fresh failure streak
        wh.consecutive_failures = 0
    wh.updated_at = utcnow()
    session.add(wh)
    await session.commit()
    await session.refresh(wh)
    return wh


@router.delete("/{webhook_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_webhook(webhook_id: uuid.UUID, auth: Auth, session: Session) -> None:
    require_admin(auth)
    wh = await _get_or_404(webhook_id, auth, session)
    await session.delete(wh)
    await session.commit()


@router.post("/{webhook_id}/test", response_model=TestPingResponse)
async def test_webhook(webhook_id: uuid.UUID, auth: Auth, session: Session) -> TestPingResponse:
    """Send a signed ping, even to a paused endpoint, and record the outcome."""
    require_admin(auth)
    wh = await _get_or_404(webhook_id, auth, session)
    resp = await send_webhook(wh, TEST_EVENT, {"webhook_id": str(wh.id)})
    record_delivery(wh, resp)
    session.add(wh)
    await session.commit()
    if resp is None:
        return TestPingResponse(success=False)
    return TestPingResponse(success=resp.is_success, status_code=resp.status_code)


async def _get_or_404(webhook_id: uuid.UUID, auth: Auth, session: Session) -> Webhook:
    result = await session.execute(
        select(Webhook).where(Webhook.id == webhook_id, Webhook.tenant_id == auth.tenant_id)
    )
    wh = result.scalar_one_or_none()
    if wh is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook not found")
    return wh
