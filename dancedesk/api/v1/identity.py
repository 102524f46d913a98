"""Identity-provider webhook: user lifecycle events signed with Svix."""

import json
import logging
from typing import Annotated

from fastapi import APIRouter, Header, HTTPException, Request, status

from dancedesk.api.deps import Session
from dancedesk.api.v1.payments import WebhookAck
from dancedesk.core.config import get_settings
from dancedesk.services.errors import SignatureError
from dancedesk.services.identity import process_identity_event
from dancedesk.services.signatures import verify_svix_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/identity", tags=["identity"])


@router.post("/webhook", response_model=WebhookAck)
async def identity_webhook(
    request: Request,
    session: Session,
    svix_id: Annotated[str | None, Header()] = None,
    svix_timestamp: Annotated[str | None, Header()] = None,
    svix_signature: Annotated[str | None, Header()] = None,
) -> WebhookAck:
    settings = get_settings()
    payload = await request.body()
    try:
        verify_svix_signature(
            payload,
            svix_id,
            svix_timestamp,
            svix_signature,
            settings.identity_webhook_secret,
            tolerance=settings.webhook_tolerance_seconds,
        )
    except SignatureError as exc:
        logger.warning("Rejected identity webhook: %s", exc)
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
        result = await process_identity_event(session, svix_id, event)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc
    return WebhookAck(status=result or "duplicate")
