"""Reconciliation against provider records, with the provider APIs mocked."""

import time
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient

from dancedesk.core.config import get_settings
from dancedesk.models.base import utcnow
from dancedesk.services.errors import ProviderError
from dancedesk.services.payments import purchase_from_checkout_session
from dancedesk.services.reconciliation import reconcile_all, reconcile_stripe, reconcile_vipps
from dancedesk.services.subscriptions import record_purchase


def _listing(*sessions: dict):
    """Stand-in for stripe_api.iter_checkout_sessions."""

    async def _iter(created_gte: int):
        for item in sessions:
            yield item

    return _iter


def _failing_listing(message: str):
    async def _iter(created_gte: int):
        raise ProviderError(message)
        yield  # pragma: no cover

    return _iter


def _stripe_session(session_id: str, tenant_id: str, pass_id: str, subject: str, **overrides) -> dict:
    data = {
        "id": session_id,
        "status": "complete",
        "payment_status": "paid",
        "created": int(time.time()) - 3600,
        "amount_total": 120000,
        "payment_intent": f"pi_{session_id}",
        "metadata": {
            "type": "pass_purchase",
            "passId": pass_id,
            "userId": subject,
            "tenantId": tenant_id,
        },
    }
    data.update(overrides)
    return data


@pytest.mark.asyncio
async def test_reconcile_stripe(session, bootstrap, add_student, add_pass):
    school = await bootstrap("recon-stripe")
    other = await bootstrap("recon-stripe-other")
    await add_student(school, "user_recon_stripe")
    dance_pass = await add_pass(school)
    tenant_id = school["tenant"]["id"]

    def paid(session_id: str, **overrides) -> dict:
        return _stripe_session(
            session_id, tenant_id, dance_pass["id"], "user_recon_stripe", **overrides,
        )

    already = paid("cs_recon_existing")
    await record_purchase(session, purchase_from_checkout_session(already))

    listing = _listing(
        paid("cs_recon_missing"),
        already,
        paid("cs_recon_bad_pass", metadata={**already["metadata"], "passId": str(uuid.uuid4())}),
        paid("cs_recon_open", status="open"),
        paid("cs_recon_unpaid", payment_status="unpaid"),
        paid("cs_recon_foreign", metadata={**already["metadata"], "tenantId": other["tenant"]["id"]}),
    )
    with patch("dancedesk.services.stripe_api.iter_checkout_sessions", listing):
        counts = await reconcile_stripe(session, tenant_id=uuid.UUID(tenant_id))
        assert counts == {"examined": 3, "created": 1, "existing": 1, "failed": 1}

        # Nothing left to create on a second run
        counts = await reconcile_stripe(session, tenant_id=uuid.UUID(tenant_id))
        assert counts == {"examined": 3, "created": 0, "existing": 2, "failed": 1}


@pytest.mark.asyncio
async def test_reconcile_vipps(client: AsyncClient, session, bootstrap, add_student, add_pass):
    school = await bootstrap("recon-vipps")
    student = await add_student(school, "user_recon_vipps")
    dance_pass = await add_pass(school)
    tenant_id = uuid.UUID(school["tenant"]["id"])

    initiate = AsyncMock(return_value={"url": "https://vipps.test/pay"})
    with patch("dancedesk.services.vipps_api.initiate_payment", initiate):
        resp = await client.post("/v1/payments/checkout", json={
            "pass_id": dance_pass["id"],
            "provider": "vipps",
            "success_url": "https://school.example/thanks",
        }, headers=student["headers"])
    order_id = resp.json()["provider_reference"]

    details = AsyncMock(return_value={
        "orderId": order_id,
        "transactionInfo": {"status": "SALE", "transactionId": "tx-recon", "amount": 120000},
    })
    with patch("dancedesk.services.vipps_api.get_payment_details", details):
        # Too young: the callback may still be on its way
        counts = await reconcile_vipps(session, tenant_id=tenant_id)
        assert counts["examined"] == 0
        details.assert_not_called()

        later = utcnow() + timedelta(minutes=10)
        counts = await reconcile_vipps(session, now=later, tenant_id=tenant_id)
        assert counts == {"examined": 1, "completed": 1, "cancelled": 0, "pending": 0, "failed": 0}

        counts = await reconcile_vipps(session, now=later, tenant_id=tenant_id)
        assert counts["examined"] == 0

    resp = await client.get("/v1/subscriptions/me", headers=student["headers"])
    subs = resp.json()
    assert len(subs) == 1
    assert subs[0]["origin"] == "reconciliation"
    assert subs[0]["vipps_order_id"] == order_id


@pytest.mark.asyncio
async def test_reconcile_all_isolates_provider_errors(session, monkeypatch):
    settings = get_settings()
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_recon")
    monkeypatch.setattr(settings, "vipps_client_id", "")

    listing = _failing_listing("Stripe error: Invalid API Key provided")
    with patch("dancedesk.services.stripe_api.iter_checkout_sessions", listing):
        report = await reconcile_all(session)
    assert report == {"stripe": {"error": "Stripe error: Invalid API Key provided"}}


@pytest.mark.asyncio
async def test_reconcile_all_skips_unconfigured(session):
    assert await reconcile_all(session) == {}


@pytest.mark.asyncio
async def test_reconcile_api(client: AsyncClient, bootstrap, add_student, add_pass):
    school = await bootstrap("recon-api")
    student = await add_student(school, "user_recon_api")
    dance_pass = await add_pass(school)
    missing = _stripe_session(
        "cs_recon_api_missing", school["tenant"]["id"], dance_pass["id"], "user_recon_api",
    )

    with patch("dancedesk.services.stripe_api.iter_checkout_sessions", _listing(missing)):
        resp = await client.post(
            "/v1/maintenance/reconcile?provider=stripe&days=3", headers=school["headers"],
        )
    assert resp.status_code == 200
    assert resp.json() == {
        "stripe": {"examined": 1, "created": 1, "existing": 0, "failed": 0},
    }

    resp = await client.post("/v1/maintenance/reconcile?provider=vipps", headers=school["headers"])
    assert resp.json() == {
        "vipps": {"examined": 0, "completed": 0, "cancelled": 0, "pending": 0, "failed": 0},
    }

    # The real client refuses to run without a secret key
    resp = await client.post("/v1/maintenance/reconcile", headers=school["headers"])
    assert resp.status_code == 502

    resp = await client.post("/v1/maintenance/reconcile", headers=student["headers"])
    assert resp.status_code == 403

    resp = await client.get(
        "/v1/subscriptions?user_id=" + student["user"]["id"], headers=school["headers"],
    )
    assert [s["stripe_session_id"] for s in resp.json()] == ["cs_recon_api_missing"]
