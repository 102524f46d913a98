"""Periodic maintenance jobs: expiry, instance generation, consistency check."""

from __future__ import annotations

import logging
from collections import defaultdict

from dancedesk.core.config import get_settings
from dancedesk.core.database import async_session_factory
from dancedesk.models.maintenance import Issue
from dancedesk.models.webhook import WebhookEvent
from dancedesk.services.consistency import count_by_kind, run_consistency_check
from dancedesk.services.schedule import generate_all_instances
from dancedesk.services.subscriptions import expire_subscriptions
from dancedesk.services.webhook_dispatch import dispatch_webhook_event

logger = logging.getLogger(__name__)


async def expire_subscriptions_job(ctx: dict) -> dict:
    async with async_session_factory() as session:
        expired = await expire_subscriptions(session)
    return {"expired": expired}


async def generate_instances_job(ctx: dict) -> dict:
    horizon = get_settings().instance_horizon_days
    async with async_session_factory() as session:
        created = await generate_all_instances(session, horizon)
    return {"created": created, "horizon_days": horizon}


async def consistency_check_job(ctx: dict) -> dict:
    """Nightly scan; each school with issues gets a maintenance.issues_found event."""
    async with async_session_factory() as session:
        issues = await run_consistency_check(session)

        by_tenant: dict = defaultdict(list)
        for issue in issues:
            if issue.tenant_id is not None:
                by_tenant[issue.tenant_id].append(issue)

        for tenant_id, tenant_issues in by_tenant.items():
            await dispatch_webhook_event(
                session,
                tenant_id,
                WebhookEvent.ISSUES_FOUND,
                _summary(tenant_issues),
            )

    logger.info(
        "Consistency check: %d issues across %d tenants", len(issues), len(by_tenant),
    )
    return {"issues": len(issues), "tenants": len(by_tenant), "counts": count_by_kind(issues)}


def _summary(issues: list[Issue]) -> dict:
    return {
        "total": len(issues),
        "fixable": sum(1 for i in issues if i.fixable),
        "counts": count_by_kind(issues),
    }
