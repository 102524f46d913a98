"""Consistency check and repair over a deliberately broken school."""

import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient

from dancedesk.core.security import create_jwt
from dancedesk.models.base import utcnow
from dancedesk.models.class_instance import ClassInstance
from dancedesk.models.dance_class import DanceClass
from dancedesk.models.dance_pass import Pass, PassType
from dancedesk.models.maintenance import IssueKind
from dancedesk.models.subscription import PaymentProvider, Subscription, SubscriptionType
from dancedesk.models.tenant import ConnectStatus, Tenant
from dancedesk.models.user import User, UserRole
from dancedesk.services.consistency import count_by_kind, repair, run_consistency_check
from dancedesk.services.subscriptions import Purchase, record_purchase


async def _seed(session, slug: str) -> dict:
    """One school with one problem of each fixable kind and a broken pass."""
    now = utcnow()
    tenant = Tenant(name="Broken Dance", slug=slug, stripe_account_status=ConnectStatus.ACTIVE)
    other = Tenant(name="Other Dance", slug=f"{slug}-other")
    session.add_all([tenant, other])
    await session.commit()

    good = Pass(
        tenant_id=tenant.id, name="10-klippekort", type=PassType.MULTI, price=1200.0,
        validity_days=90, classes_limit=10,
    )
    broken = Pass(
        tenant_id=tenant.id, name="Klippekort uten klipp", type=PassType.MULTI, price=900.0,
        validity_days=30,
    )
    student = User(auth_subject=f"user_{slug}_student", tenant_id=tenant.id, role=UserRole.STUDENT)
    moved = User(auth_subject=f"user_{slug}_moved", tenant_id=other.id, role=UserRole.STUDENT)
    lost = User(auth_subject=f"user_{slug}_lost", role=UserRole.PENDING, is_active=False)
    # Points at a school that has since been removed
    stranded = User(
        auth_subject=f"user_{slug}_stranded", tenant_id=uuid.uuid4(), role=UserRole.STUDENT,
    )
    session.add_all([good, broken, student, moved, lost, stranded])
    await session.commit()

    def sub(user_id: uuid.UUID, start_days_ago: int = 10, **fields) -> Subscription:
        start = now - timedelta(days=start_days_ago)
        values = {
            "tenant_id": tenant.id,
            "user_id": user_id,
            "pass_id": good.id,
            "pass_name": good.name,
            "type": SubscriptionType.CLIPCARD,
            "start_date": start,
            "end_date": start + timedelta(days=90),
            "remaining_clips": 5,
            **fields,
        }
        return Subscription(**values)

    start = now - timedelta(days=10)
    subs = {
        "renamed": sub(student.id, pass_name="Gammelt navn"),
        "wrong_end": sub(student.id, end_date=start + timedelta(days=30)),
        "expired": sub(student.id, start_days_ago=100),
        "negative": sub(student.id, remaining_clips=-2),
        "other_school": sub(moved.id),
        "stranded": sub(stranded.id),
        "orphan": sub(uuid.uuid4()),
        "dead_orphan": sub(uuid.uuid4(), is_active=False),
    }
    session.add_all(subs.values())

    cls = DanceClass(tenant_id=tenant.id, title="Hiphop", single_class_date=now + timedelta(days=2))
    session.add(cls)
    await session.commit()
    inst = ClassInstance(
        tenant_id=tenant.id, class_id=cls.id, start=now + timedelta(days=2),
        end=now + timedelta(days=2, hours=1), capacity=20, booking_count=3,
    )
    session.add(inst)
    await session.commit()
    return {
        "tenant": tenant, "other": other, "broken": broken, "moved": moved,
        "stranded": stranded, "lost": lost,
        "subs": subs, "instance": inst,
    }


@pytest.mark.asyncio
async def test_check_finds_every_problem(session):
    seeded = await _seed(session, "cons-check")
    issues = await run_consistency_check(session, seeded["tenant"].id)

    assert count_by_kind(issues) == {
        "subscription_pass_name_mismatch": 1,
        "subscription_end_date_mismatch": 1,
        "subscription_expired_but_active": 1,
        "subscription_negative_clips": 1,
        "subscription_tenant_mismatch": 2,
        "subscription_orphaned_user": 1,
        "pass_misconfigured": 1,
        "instance_booking_count_mismatch": 1,
        "tenant_connect_status_mismatch": 1,
    }
    by_kind = {i.kind: i for i in issues}
    assert by_kind[IssueKind.SUBSCRIPTION_PASS_NAME_MISMATCH].entity_id == seeded["subs"]["renamed"].id
    assert by_kind[IssueKind.PASS_MISCONFIGURED].entity_id == seeded["broken"].id
    assert by_kind[IssueKind.PASS_MISCONFIGURED].fixable is False
    mismatches = {
        i.entity_id: i.fixable for i in issues if i.kind == IssueKind.SUBSCRIPTION_TENANT_MISMATCH
    }
    # A customer of another live school is never moved automatically
    assert mismatches == {
        seeded["subs"]["other_school"].id: False,
        seeded["subs"]["stranded"].id: True,
    }
    orphans = [i for i in issues if i.kind == IssueKind.SUBSCRIPTION_ORPHANED_USER]
    assert [i.entity_id for i in orphans] == [seeded["subs"]["orphan"].id]
    assert by_kind[IssueKind.INSTANCE_BOOKING_COUNT_MISMATCH].entity_id == seeded["instance"].id
    # Tenant-less users are only reported by a full scan
    assert IssueKind.USER_WITHOUT_TENANT not in by_kind

    everything = await run_consistency_check(session)
    lost = [i for i in everything if i.kind == IssueKind.USER_WITHOUT_TENANT]
    assert seeded["lost"].id in {i.entity_id for i in lost}
    assert all(i.fixable is False for i in lost)


@pytest.mark.asyncio
async def test_repair_fixes_what_it_can(session):
    seeded = await _seed(session, "cons-repair")
    tenant_id = seeded["tenant"].id
    now = utcnow()
    issues = await run_consistency_check(session, tenant_id, now)

    assert await repair(session, issues, now) == 8

    subs = seeded["subs"]
    for sub in subs.values():
        await session.refresh(sub)
    assert subs["renamed"].pass_name == "10-klippekort"
    assert subs["wrong_end"].end_date == subs["wrong_end"].start_date + timedelta(days=90)
    assert subs["wrong_end"].is_active is True
    assert subs["expired"].is_active is False
    assert subs["negative"].remaining_clips == 0
    assert subs["orphan"].is_active is False
    assert subs["other_school"].is_active is True

    await session.refresh(seeded["moved"])
    assert seeded["moved"].tenant_id == seeded["other"].id
    await session.refresh(seeded["stranded"])
    assert seeded["stranded"].tenant_id == tenant_id
    await session.refresh(seeded["instance"])
    assert seeded["instance"].booking_count == 0
    await session.refresh(seeded["tenant"])
    assert seeded["tenant"].stripe_account_status == ConnectStatus.NOT_CONNECTED

    remaining = await run_consistency_check(session, tenant_id)
    assert sorted(i.kind for i in remaining) == sorted([
        IssueKind.PASS_MISCONFIGURED, IssueKind.SUBSCRIPTION_TENANT_MISMATCH,
    ])
    assert not any(i.fixable for i in remaining)

    # A stale report is harmless the second time
    assert await repair(session, issues, now) == 0


@pytest.mark.asyncio
async def test_consistency_api(client: AsyncClient, session, bootstrap, add_student, add_pass):
    school = await bootstrap("cons-api")
    student = await add_student(school, "user_cons_api")
    dance_pass = await add_pass(school)

    resp = await client.get("/v1/maintenance/consistency", headers=school["headers"])
    assert resp.status_code == 200
    assert resp.json() == {"issues": [], "counts": {}}

    resp = await client.post("/v1/subscriptions", json={
        "user_id": student["user"]["id"], "pass_id": dance_pass["id"],
    }, headers=school["headers"])
    sub = await session.get(Subscription, uuid.UUID(resp.json()["id"]))
    sub.remaining_clips = -1
    session.add(sub)
    await session.commit()

    resp = await client.get("/v1/maintenance/consistency", headers=school["headers"])
    report = resp.json()
    assert report["counts"] == {"subscription_negative_clips": 1}
    assert report["issues"][0]["entity_id"] == str(sub.id)
    assert report["issues"][0]["tenant_id"] == school["tenant"]["id"]

    resp = await client.post(
        "/v1/maintenance/repair",
        json={"kinds": ["instance_booking_count_mismatch"]},
        headers=school["headers"],
    )
    assert resp.json() == {"found": 0, "fixed": 0, "remaining": 1}

    resp = await client.post("/v1/maintenance/repair", json={}, headers=school["headers"])
    assert resp.json() == {"found": 1, "fixed": 1, "remaining": 0}

    resp = await client.get("/v1/maintenance/consistency", headers=student["headers"])
    assert resp.status_code == 403
    resp = await client.post("/v1/maintenance/repair", json={}, headers=student["headers"])
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_repair_leaves_other_schools_customers_alone(
    client: AsyncClient, session, bootstrap, add_pass,
):
    school_a = await bootstrap("cons-cross-a")
    school_b = await bootstrap("cons-cross-b")
    dance_pass = await add_pass(school_a)

    # B's owner buys a pass at A
    sub, created = await record_purchase(session, Purchase(
        tenant_id=uuid.UUID(school_a["tenant"]["id"]),
        pass_id=uuid.UUID(dance_pass["id"]),
        provider=PaymentProvider.STRIPE,
        purchased_at=utcnow(),
        auth_subject="user_owner_cons-cross-b",
        stripe_session_id="cs_cons_cross",
    ))
    assert created is True
    assert str(sub.user_id) == school_b["owner"]["id"]

    resp = await client.get("/v1/maintenance/consistency", headers=school_a["headers"])
    issues = resp.json()["issues"]
    assert [(i["kind"], i["fixable"]) for i in issues] == [
        ("subscription_tenant_mismatch", False),
    ]

    resp = await client.post("/v1/maintenance/repair", json={}, headers=school_a["headers"])
    assert resp.json() == {"found": 1, "fixed": 0, "remaining": 1}

    owner = await session.get(User, uuid.UUID(school_b["owner"]["id"]))
    await session.refresh(owner)
    assert str(owner.tenant_id) == school_b["tenant"]["id"]
    assert owner.role == UserRole.ADMIN

    resp = await client.get(
        "/v1/users/me",
        headers={"Authorization": f"Bearer {create_jwt('user_owner_cons-cross-b')}"},
    )
    assert resp.status_code == 200
    assert resp.json()["tenant_id"] == school_b["tenant"]["id"]
    assert resp.json()["role"] == "admin"
