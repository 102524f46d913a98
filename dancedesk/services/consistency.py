"""Scheduled consistency check and repair across tenants, users and bookings."""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from dancedesk.models.base import utcnow
from dancedesk.models.booking import Booking, BookingStatus
from dancedesk.models.class_instance import ClassInstance
from dancedesk.models.dance_pass import Pass
from dancedesk.models.maintenance import UNFIXABLE_KINDS, Issue, IssueKind
from dancedesk.models.subscription import Subscription
from dancedesk.models.tenant import ConnectStatus, Tenant
from dancedesk.models.user import User
from dancedesk.services.errors import PassConfigurationError
from dancedesk.services.passes import FALLBACK_PASS_NAMES, compute_end_date, validation_problems
from dancedesk.services.schedule import dedupe_instances, duplicate_instances

logger = logging.getLogger(__name__)

END_DATE_SLACK = timedelta(days=1)


def _issue(
    kind: IssueKind,
    entity_id: uuid.UUID,
    tenant_id: uuid.UUID | None,
    detail: str,
    fixable: bool = True,
) -> Issue:
    return Issue(
        kind=kind,
        entity_id=entity_id,
        tenant_id=tenant_id,
        detail=detail,
        fixable=fixable and kind not in UNFIXABLE_KINDS,
    )


def expected_end_date(sub: Subscription, dance_pass: Pass) -> datetime | None:
    try:
        return compute_end_date(dance_pass, sub.start_date)
    except PassConfigurationError:
        return None


def check_subscription(
    sub: Subscription,
    tenant: Tenant | None,
    user: User | None,
    dance_pass: Pass | None,
    now: datetime,
    user_tenant_exists: bool = True,
) -> list[Issue]:
    """Every problem with one subscription, given its related rows.

    Orphans only count while the subscription is active; repair deactivates
    them and they stop being reported. A user at another existing school is
    never moved automatically, so that mismatch is reported as unfixable.
    """
    issues: list[Issue] = []

    def add(kind: IssueKind, detail: str, fixable: bool = True) -> None:
        issues.append(_issue(kind, sub.id, sub.tenant_id, detail, fixable))

    if tenant is None and sub.is_active:
        add(IssueKind.SUBSCRIPTION_ORPHANED_TENANT, f"Tenant {sub.tenant_id} does not exist")
    if user is None:
        if sub.is_active:
            add(IssueKind.SUBSCRIPTION_ORPHANED_USER, f"User {sub.user_id} does not exist")
    elif user.tenant_id is not None and user.tenant_id != sub.tenant_id:
        if user_tenant_exists:
            add(
                IssueKind.SUBSCRIPTION_TENANT_MISMATCH,
                f"User {user.id} belongs to another school ({user.tenant_id})",
                fixable=False,
            )
        else:
            add(
                IssueKind.SUBSCRIPTION_TENANT_MISMATCH,
                f"User {user.id} points at missing tenant {user.tenant_id}",
            )

    if not sub.pass_name:
        add(IssueKind.SUBSCRIPTION_PASS_NAME_MISMATCH, "Pass name is empty")
    elif dance_pass is not None and sub.pass_name != dance_pass.name:
        add(
            IssueKind.SUBSCRIPTION_PASS_NAME_MISMATCH,
            f"'{sub.pass_name}' differs from pass name '{dance_pass.name}'",
        )

    if dance_pass is not None:
        expected = expected_end_date(sub, dance_pass)
        if expected is not None and abs(expected - sub.end_date) > END_DATE_SLACK:
            add(
                IssueKind.SUBSCRIPTION_END_DATE_MISMATCH,
                f"End date {sub.end_date.isoformat()} but pass gives {expected.isoformat()}",
            )

    if sub.is_active and sub.end_date <= now:
        add(IssueKind.SUBSCRIPTION_EXPIRED_BUT_ACTIVE, f"Ended {sub.end_date.isoformat()}")
    if sub.remaining_clips is not None and sub.remaining_clips < 0:
        add(IssueKind.SUBSCRIPTION_NEGATIVE_CLIPS, f"{sub.remaining_clips} clips remaining")
    return issues


async def run_consistency_check(
    session: AsyncSession,
    tenant_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> list[Issue]:
    """Scan one tenant (or all) and return every issue found."""
    now = now or utcnow()
    issues: list[Issue] = []

    def scoped(stmt, column):
        return stmt.where(column == tenant_id) if tenant_id is not None else stmt

    tenants = {t.id: t for t in (await session.execute(select(Tenant))).scalars().all()}
    users = {u.id: u for u in (await session.execute(select(User))).scalars().all()}
    passes = {
        p.id: p
        for p in (await session.execute(scoped(select(Pass), Pass.tenant_id))).scalars().all()
    }

    subs = (
        await session.execute(scoped(select(Subscription), Subscription.tenant_id))
    ).scalars().all()
    for sub in subs:
        dance_pass = passes.get(sub.pass_id) if sub.pass_id else None
        if dance_pass is None and sub.pass_id is not None:
            dance_pass = await session.get(Pass, sub.pass_id)
        user = users.get(sub.user_id)
        issues.extend(
            check_subscription(
                sub, tenants.get(sub.tenant_id), user, dance_pass, now,
                user_tenant_exists=user is None or user.tenant_id in tenants,
            )
        )

    if tenant_id is None:
        for user in users.values():
            if user.tenant_id is None:
                issues.append(
                    _issue(IssueKind.USER_WITHOUT_TENANT, user.id, None, user.email or user.auth_subject)
                )

    for dance_pass in passes.values():
        for problem in validation_problems(dance_pass):
            issues.append(
                _issue(IssueKind.PASS_MISCONFIGURED, dance_pass.id, dance_pass.tenant_id, problem)
            )

    instances = (
        await session.execute(scoped(select(ClassInstance), ClassInstance.tenant_id))
    ).scalars().all()
    for dup, keeper in duplicate_instances(list(instances)):
        issues.append(
            _issue(
                IssueKind.INSTANCE_DUPLICATE, dup.id, dup.tenant_id,
                f"Duplicate of {keeper.id} at {dup.start.isoformat()}",
            )
        )

    booked = await session.execute(
        scoped(
            select(Booking.instance_id, func.count())
            .where(Booking.status == BookingStatus.CONFIRMED)
            .group_by(Booking.instance_id),
            Booking.tenant_id,
        )
    )
    confirmed = dict(booked.all())
    for inst in instances:
        actual = confirmed.get(inst.id, 0)
        if inst.booking_count != actual:
            issues.append(
                _issue(
                    IssueKind.INSTANCE_BOOKING_COUNT_MISMATCH, inst.id, inst.tenant_id,
                    f"booking_count {inst.booking_count} but {actual} confirmed bookings",
                )
            )

    for tenant in tenants.values():
        if tenant_id is not None and tenant.id != tenant_id:
            continue
        if tenant.stripe_account_status == ConnectStatus.ACTIVE and not tenant.stripe_account_id:
            issues.append(
                _issue(
                    IssueKind.TENANT_CONNECT_STATUS_MISMATCH, tenant.id, tenant.id,
                    "Stripe Connect marked active without an account id",
                )
            )

    if issues:
        logger.info(
            "Consistency check (%s) found %d issues: %s",
            tenant_id or "all tenants", len(issues),
            count_by_kind(issues),
        )
    return issues


def count_by_kind(issues: list[Issue]) -> dict[str, int]:
    return dict(Counter(i.kind.value for i in issues))


# ── Repair ────────────────────────────────────────────────────

async def _fix_subscription(
    session: AsyncSession, issue: Issue, now: datetime
) -> bool:
    sub = await session.get(Subscription, issue.entity_id)
    if sub is None:
        return False
    kind = issue.kind

    if kind in (
        IssueKind.SUBSCRIPTION_ORPHANED_USER,
        IssueKind.SUBSCRIPTION_ORPHANED_TENANT,
        IssueKind.SUBSCRIPTION_EXPIRED_BUT_ACTIVE,
    ):
        if not sub.is_active:
            return False
        sub.is_active = False
    elif kind == IssueKind.SUBSCRIPTION_TENANT_MISMATCH:
        user = await session.get(User, sub.user_id)
        if user is None or user.tenant_id == sub.tenant_id:
            return False
        # Only a user whose school is gone moves to the school that took the payment
        if user.tenant_id is not None and await session.get(Tenant, user.tenant_id) is not None:
            return False
        user.tenant_id = sub.tenant_id
        user.updated_at = now
        session.add(user)
    elif kind == IssueKind.SUBSCRIPTION_PASS_NAME_MISMATCH:
        dance_pass = await session.get(Pass, sub.pass_id) if sub.pass_id else None
        name = dance_pass.name if dance_pass else FALLBACK_PASS_NAMES.get(sub.type, "Dance Pass")
        if sub.pass_name == name:
            return False
        sub.pass_name = name
    elif kind == IssueKind.SUBSCRIPTION_END_DATE_MISMATCH:
        dance_pass = await session.get(Pass, sub.pass_id) if sub.pass_id else None
        expected = expected_end_date(sub, dance_pass) if dance_pass else None
        if expected is None or expected == sub.end_date:
            return False
        sub.end_date = expected
        sub.is_active = sub.is_active and expected > now
    elif kind == IssueKind.SUBSCRIPTION_NEGATIVE_CLIPS:
        if sub.remaining_clips is None or sub.remaining_clips >= 0:
            return False
        sub.remaining_clips = 0
    else:
        return False

    sub.updated_at = now
    session.add(sub)
    return True


async def _fix_booking_count(session: AsyncSession, issue: Issue, now: datetime) -> bool:
    inst = await session.get(ClassInstance, issue.entity_id)
    if inst is None:
        return False
    result = await session.execute(
        select(func.count()).select_from(Booking).where(
            Booking.instance_id == inst.id,
            Booking.status == BookingStatus.CONFIRMED,
        )
    )
    actual = result.scalar_one()
    if inst.booking_count == actual:
        return False
    inst.booking_count = actual
    inst.updated_at = now
    session.add(inst)
    return True


async def _fix_connect_status(session: AsyncSession, issue: Issue, now: datetime) -> bool:
    tenant = await session.get(Tenant, issue.entity_id)
    if tenant is None or tenant.stripe_account_id:
        return False
    if tenant.stripe_account_status != ConnectStatus.ACTIVE:
        return False
    tenant.stripe_account_status = ConnectStatus.NOT_CONNECTED
    tenant.updated_at = now
    session.add(tenant)
    return True


async def repair(
    session: AsyncSession, issues: list[Issue], now: datetime | None = None
) -> int:
    """Apply the fix for every fixable issue; returns how many were fixed.

    Each fix re-checks its condition first, so repairing a stale report
    twice is harmless.
    """
    now = now or utcnow()
    fixed = 0
    dedupe_tenants: set[uuid.UUID] = set()

    for issue in issues:
        if not issue.fixable or issue.kind in UNFIXABLE_KINDS:
            continue
        if issue.kind == IssueKind.INSTANCE_DUPLICATE:
            if issue.tenant_id is not None:
                dedupe_tenants.add(issue.tenant_id)
            continue
        if issue.kind == IssueKind.INSTANCE_BOOKING_COUNT_MISMATCH:
            done = await _fix_booking_count(session, issue, now)
        elif issue.kind == IssueKind.TENANT_CONNECT_STATUS_MISMATCH:
            done = await _fix_connect_status(session, issue, now)
        else:
            done = await _fix_subscription(session, issue, now)
        if done:
            fixed += 1
            logger.info("Repaired %s on %s", issue.kind, issue.entity_id)

    await session.commit()

    for tenant_id in dedupe_tenants:
        fixed += await dedupe_instances(session, tenant_id)
    return fixed
