"""Inbound event ledger: claim a provider event once, record how it ended."""

from __future__ import annotations

import logging
import time
import uuid

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from dancedesk.models.base import utcnow
from dancedesk.models.provider_event import EventProvider, EventStatus, ProviderEvent

logger = logging.getLogger(__name__)

FINAL_STATUSES = (EventStatus.SUCCESS, EventStatus.IGNORED)


async def open_event(
    session: AsyncSession,
    provider: EventProvider,
    event_id: str,
    event_type: str,
) -> uuid.UUID | None:
    """Claim an event for processing.

    Returns the ledger row id, or None when the event was already handled
    (or is being claimed by a concurrent delivery). Errored events are
    reopened so a provider retry gets another attempt.
    """
    result = await session.execute(
        select(ProviderEvent).where(
            ProviderEvent.provider == provider,
            ProviderEvent.event_id == event_id,
        )
    )
    row = result.scalar_one_or_none()
    if row is not None:
        if row.status in FINAL_STATUSES:
            logger.info("Skipping already processed %s event %s", provider, event_id)
            return None
        row.attempts += 1
        row.status = EventStatus.PROCESSING
        row.error = None
        row.updated_at = utcnow()
        session.add(row)
        await session.commit()
        logger.info("Retrying %s event %s (attempt %d)", provider, event_id, row.attempts)
        return row.id

    row = ProviderEvent(provider=provider, event_id=event_id, event_type=event_type)
    session.add(row)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        logger.info("%s event %s claimed by a concurrent delivery", provider, event_id)
        return None
    return row.id


async def close_event(
    session: AsyncSession,
    ledger_id: uuid.UUID,
    status: EventStatus,
    *,
    details: dict | None = None,
    error: str | None = None,
    tenant_id: uuid.UUID | None = None,
    started: float | None = None,
) -> None:
    values: dict = {"status": status, "updated_at": utcnow()}
    if details is not None:
        values["details"] = details
    if error is not None:
        values["error"] = error[:2000]
    if tenant_id is not None:
        values["tenant_id"] = tenant_id
    if started is not None:
        values["processing_time_ms"] = int((time.monotonic() - started) * 1000)
    await session.execute(
        update(ProviderEvent).where(ProviderEvent.id == ledger_id).values(**values)
    )
    await session.commit()
