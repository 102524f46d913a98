"""Maintenance: consistency check, repair, reconciliation and event log."""

import logging
from datetime import timedelta

from fastapi import APIRouter, HTTPException, status
from sqlmodel import select

from dancedesk.api.deps import Auth, Session, require_admin
from dancedesk.models.base import utcnow
from dancedesk.models.maintenance import ConsistencyReport, RepairRequest, RepairResult
from dancedesk.models.provider_event import (
    EventProvider,
    EventStatus,
    ProviderEvent,
    ProviderEventRead,
)
from dancedesk.services.consistency import count_by_kind, repair, run_consistency_check
from dancedesk.services.errors import ProviderError
from dancedesk.services.reconciliation import reconcile_stripe, reconcile_vipps

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@router.get("/consistency", response_model=ConsistencyReport)
async def consistency(auth: Auth, session: Session) -> ConsistencyReport:
    require_admin(auth)
    issues = await run_consistency_check(session, auth.tenant_id)
    return ConsistencyReport(issues=issues, counts=count_by_kind(issues))


@router.post("/repair", response_model=RepairResult)
async def repair_issues(
    body: RepairRequest,
    auth: Auth,
    session: Session,
) -> RepairResult:
    """Fix what can be fixed automatically; optionally only some kinds."""
    require_admin(auth)
    issues = await run_consistency_check(session, auth.tenant_id)
    selected = [i for i in issues if body.kinds is None or i.kind in body.kinds]
    fixed = await repair(session, selected)
    remaining = await run_consistency_check(session, auth.tenant_id)
    logger.info(
        "Repair for tenant %s: %d found, %d fixed, %d remaining",
        auth.tenant_id, len(selected), fixed, len(remaining),
    )
    return RepairResult(found=len(selected), fixed=fixed, remaining=len(remaining))


@router.post("/reconcile")
async def reconcile(
    auth: Auth,
    session: Session,
    provider: EventProvider | None = None,
    days: int | None = None,
) -> dict:
    """Create subscriptions for payments whose webhook never arrived."""
    require_admin(auth)
    report: dict = {}
    try:
        if provider in (None, EventProvider.STRIPE):
            since = utcnow() - timedelta(days=days) if days and days > 0 else None
            report["stripe"] = await reconcile_stripe(
                session, since=since, tenant_id=auth.tenant_id,
            )
        if provider in (None, EventProvider.VIPPS):
            report["vipps"] = await reconcile_vipps(session, tenant_id=auth.tenant_id)
    except ProviderError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return report


@router.get("/events", response_model=list[ProviderEventRead])
async def list_events(
    auth: Auth,
    session: Session,
    provider: EventProvider | None = None,
    event_status: EventStatus | None = None,
    limit: int = 100,
) -> list[ProviderEventRead]:
    """Inbound webhook log for this school, newest first."""
    require_admin(auth)
    stmt = select(ProviderEvent).where(ProviderEvent.tenant_id == auth.tenant_id)
    if provider is not None:
        stmt = stmt.where(ProviderEvent.provider == provider)
    if event_status is not None:
        stmt = stmt.where(ProviderEvent.status == event_status)
    stmt = stmt.order_by(ProviderEvent.created_at.desc()).limit(min(max(limit, 1), 500))  # type: ignore[union-attr]
    result = await session.execute(stmt)
    return [ProviderEventRead.model_validate(e) for e in result.scalars().all()]
