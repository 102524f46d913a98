"""Periodic job: re-derive subscriptions from Stripe and Vipps records.

Runs every 15 minutes across all schools.
"""

from __future__ import annotations

import logging

from dancedesk.core.database import async_session_factory
from dancedesk.services.reconciliation import reconcile_all

logger = logging.getLogger(__name__)


async def reconcile_payments(ctx: dict) -> dict:
    async with async_session_factory() as session:
        report = await reconcile_all(session)

    if not report:
        logger.info("Reconciliation skipped: no payment provider configured")
    return report
