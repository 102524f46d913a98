"""Webhook dispatch: fire signed HTTP notifications for tenant events."""

import json
import logging
import uuid

import httpx
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from dancedesk.models.base import utcnow
from dancedesk.models.webhook import Webhook
from dancedesk.services.signatures import sign_payload

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-DanceDesk-Signature"
EVENT_HEADER = "X-DanceDesk-Event"


async def dispatch_webhook_event(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    event_type: str,
    payload: dict,
) -> None:
    """Deliver an event to every active subscriber of the tenant. Never raises.

    Callers commit their own work first; the delivery outcome is committed here.
    """
    try:
        stmt = select(Webhook).where(
            Webhook.tenant_id == tenant_id,
            Webhook.is_active.is_(True),
        )
        result = await session.execute(stmt)
        targets = [wh for wh in result.scalars().all() if event_type in wh.events]

        for wh in targets:
            resp = await send_webhook(wh, event_type, payload)
            record_delivery(wh, resp)
            session.add(wh)
        if targets:
            await session.commit()
    except Exception:
        logger.exception(
            "Webhook dispatch failed for tenant %s event %s", tenant_id, event_type
        )


async def send_webhook(wh: Webhook, event_type: str, payload: dict) -> httpx.Response | None:
    """POST one signed event; returns the response, or None if delivery failed."""
    body = json.dumps({"event": event_type, "data": payload}, default=str)
    try:
        async with httpx.AsyncClient(timeout=10) as client:
            return await client.post(
                wh.url,
                content=body,
                headers={
                    "Content-Type": "application/json",
                    SIGNATURE_HEADER: sign_payload(wh.secret, body),
                    EVENT_HEADER: event_type,
                },
            )
    except httpx.HTTPError:
        logger.warning("Webhook delivery failed for %s to %s", event_type, wh.url)
        return None


def record_delivery(wh: Webhook, resp: httpx.Response | None) -> None:
    wh.last_delivery_at = utcnow()
    wh.last_status_code = resp.status_code if resp is not None else None
    if resp is not None and resp.is_success:
        wh.consecutive_failures = 0
        return
    wh.consecutive_failures += 1
    if resp is not None:
        logger.warning(
            "Webhook %s answered %s (%d consecutive failures)",
            wh.id, resp.status_code, wh.consecutive_failures,
        )
