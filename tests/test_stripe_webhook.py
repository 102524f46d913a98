"""Stripe webhook endpoint: signature check, purchase handling, event ledger."""

import hashlib
import hmac
import json
import time
import uuid

import pytest
from httpx import AsyncClient
from sqlmodel import select

from dancedesk.core.config import get_settings
from dancedesk.models.checkout import Checkout, CheckoutStatus
from dancedesk.models.provider_event import EventProvider, EventStatus, ProviderEvent
from dancedesk.models.subscription import PaymentProvider

WEBHOOK_URL = "/v1/payments/stripe/webhook"


def _signed(event: dict, secret: str | None = None) -> tuple[bytes, dict]:
    body = json.dumps(event).encode()
    secret = secret or get_settings().stripe_webhook_secret
    timestamp = int(time.time())
    sig = hmac.new(secret.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()
    return body, {
        "Stripe-Signature": f"t={timestamp},v1={sig}",
        "Content-Type": "application/json",
    }


def _completed_event(school: dict, dance_pass: dict, subject: str, **overrides) -> dict:
    session_id = overrides.pop("session_id", f"cs_test_{uuid.uuid4().hex[:16]}")
    checkout_session = {
        "id": session_id,
        "object": "checkout.session",
        "status": "complete",
        "payment_status": "paid",
        "created": int(time.time()),
        "amount_total": 120000,
        "currency": "nok",
        "payment_intent": f"pi_{uuid.uuid4().hex[:16]}",
        "customer_details": {"email": f"{subject}@example.com", "name": "Ada Dancer"},
        "metadata": {
            "type": "pass_purchase",
            "passId": dance_pass["id"],
            "userId": subject,
            "tenantId": school["tenant"]["id"],
            "userEmail": f"{subject}@example.com",
        },
    }
    checkout_session.update(overrides)
    return {
        "id": f"evt_{uuid.uuid4().hex[:16]}",
        "type": "checkout.session.completed",
        "data": {"object": checkout_session},
    }


async def _post(client: AsyncClient, event: dict):
    body, headers = _signed(event)
    return await client.post(WEBHOOK_URL, content=body, headers=headers)


async def _subscriptions(client: AsyncClient, school: dict) -> list[dict]:
    resp = await client.get("/v1/subscriptions", headers=school["headers"])
    assert resp.status_code == 200
    return resp.json()


@pytest.mark.asyncio
async def test_completed_checkout_creates_subscription(client: AsyncClient, bootstrap, add_pass):
    school = await bootstrap("stripe-wh-complete")
    dance_pass = await add_pass(school)
    event = _completed_event(school, dance_pass, "user_stripe_new_buyer")

    resp = await _post(client, event)
    assert resp.status_code == 200
    assert resp.json() == {"received": True, "status": "success"}

    subs = await _subscriptions(client, school)
    assert len(subs) == 1
    sub = subs[0]
    assert sub["stripe_session_id"] == event["data"]["object"]["id"]
    assert sub["payment_provider"] == "stripe"
    assert sub["purchase_price"] == 1200.0
    assert sub["remaining_clips"] == 10
    assert sub["origin"] == "webhook"

    # The buyer was unknown locally and now exists as a student
    resp = await client.get("/v1/users", params={"role": "student"}, headers=school["headers"])
    assert [u["auth_subject"] for u in resp.json()] == ["user_stripe_new_buyer"]


@pytest.mark.asyncio
async def test_redelivered_event_is_a_duplicate(client: AsyncClient, bootstrap, add_pass):
    school = await bootstrap("stripe-wh-redeliver")
    dance_pass = await add_pass(school)
    event = _completed_event(school, dance_pass, "user_stripe_redeliver")

    assert (await _post(client, event)).json()["status"] == "success"
    resp = await _post(client, event)
    assert resp.status_code == 200
    assert resp.json()["status"] == "duplicate"
    assert len(await _subscriptions(client, school)) == 1


@pytest.mark.asyncio
async def test_second_event_for_same_session_creates_nothing(
    client: AsyncClient, bootstrap, add_pass,
):
    """completed + async_payment_succeeded for one session → one subscription."""
    school = await bootstrap("stripe-wh-two-events")
    dance_pass = await add_pass(school)
    first = _completed_event(school, dance_pass, "user_stripe_two_events")
    second = json.loads(json.dumps(first))
    second["id"] = f"evt_{uuid.uuid4().hex[:16]}"
    second["type"] = "checkout.session.async_payment_succeeded"

    assert (await _post(client, first)).json()["status"] == "success"
    assert (await _post(client, second)).json()["status"] == "success"
    assert len(await _subscriptions(client, school)) == 1


@pytest.mark.asyncio
async def test_missing_metadata_is_recorded_as_error(
    client: AsyncClient, bootstrap, add_pass, session,
):
    school = await bootstrap("stripe-wh-no-meta")
    dance_pass = await add_pass(school)
    event = _completed_event(school, dance_pass, "user_stripe_no_meta")
    del event["data"]["object"]["metadata"]["passId"]

    resp = await _post(client, event)
    assert resp.status_code == 200
    assert resp.json()["status"] == "error"
    assert await _subscriptions(client, school) == []

    result = await session.execute(
        select(ProviderEvent).where(
            ProviderEvent.provider == EventProvider.STRIPE,
            ProviderEvent.event_id == event["id"],
        )
    )
    row = result.scalar_one()
    await session.refresh(row)
    assert row.status == EventStatus.ERROR
    assert "passId" in row.error


@pytest.mark.asyncio
async def test_errored_event_is_retried(client: AsyncClient, bootstrap, add_pass, session):
    school = await bootstrap("stripe-wh-retry")
    dance_pass = await add_pass(school)
    event = _completed_event(school, dance_pass, "user_stripe_retry")
    real_pass_id = event["data"]["object"]["metadata"]["passId"]
    event["data"]["object"]["metadata"]["passId"] = str(uuid.uuid4())

    assert (await _post(client, event)).json()["status"] == "error"

    # Same event id, now deliverable: errors are not final
    event["data"]["object"]["metadata"]["passId"] = real_pass_id
    assert (await _post(client, event)).json()["status"] == "success"

    result = await session.execute(
        select(ProviderEvent).where(ProviderEvent.event_id == event["id"])
    )
    row = result.scalar_one()
    await session.refresh(row)
    assert row.attempts == 2
    assert row.status == EventStatus.SUCCESS


@pytest.mark.asyncio
async def test_unpaid_and_unrelated_events_are_ignored(
    client: AsyncClient, bootstrap, add_pass,
):
    school = await bootstrap("stripe-wh-ignored")
    dance_pass = await add_pass(school)

    unpaid = _completed_event(school, dance_pass, "user_stripe_unpaid", payment_status="unpaid")
    assert (await _post(client, unpaid)).json()["status"] == "ignored"

    donation = _completed_event(school, dance_pass, "user_stripe_donation")
    donation["data"]["object"]["metadata"]["type"] = "donation"
    assert (await _post(client, donation)).json()["status"] == "ignored"

    refund = {"id": f"evt_{uuid.uuid4().hex[:16]}", "type": "charge.refunded",
              "data": {"object": {"id": "ch_1"}}}
    assert (await _post(client, refund)).json()["status"] == "ignored"

    assert await _subscriptions(client, school) == []


@pytest.mark.asyncio
async def test_expired_session_fails_checkout(
    client: AsyncClient, bootstrap, add_student, add_pass, session,
):
    school = await bootstrap("stripe-wh-expired")
    student = await add_student(school, "user_stripe_expired")
    dance_pass = await add_pass(school)
    checkout = Checkout(
        tenant_id=uuid.UUID(school["tenant"]["id"]),
        user_id=uuid.UUID(student["user"]["id"]),
        pass_id=uuid.UUID(dance_pass["id"]),
        provider=PaymentProvider.STRIPE,
        provider_reference="cs_test_expired_checkout",
        amount=120000,
        currency="NOK",
    )
    session.add(checkout)
    await session.commit()

    event = {
        "id": f"evt_{uuid.uuid4().hex[:16]}",
        "type": "checkout.session.expired",
        "data": {"object": {"id": "cs_test_expired_checkout", "status": "expired"}},
    }
    resp = await _post(client, event)
    assert resp.json()["status"] == "success"

    await session.refresh(checkout)
    assert checkout.status == CheckoutStatus.FAILED


@pytest.mark.asyncio
async def test_bad_signature_rejected(client: AsyncClient, bootstrap, add_pass):
    school = await bootstrap("stripe-wh-bad-sig")
    dance_pass = await add_pass(school)
    event = _completed_event(school, dance_pass, "user_stripe_bad_sig")
    body, headers = _signed(event, secret="whsec_wrong")

    resp = await client.post(WEBHOOK_URL, content=body, headers=headers)
    assert resp.status_code == 400
    assert "signature verification failed" in resp.json()["detail"]

    resp = await client.post(WEBHOOK_URL, content=body)
    assert resp.status_code == 400
    assert await _subscriptions(client, school) == []


@pytest.mark.asyncio
async def test_malformed_payloads(client: AsyncClient):
    body, headers = _signed({"type": "checkout.session.completed"})
    resp = await client.post(WEBHOOK_URL, content=body, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Event has no id"

    raw = b"not json"
    secret = get_settings().stripe_webhook_secret
    timestamp = int(time.time())
    sig = hmac.new(secret.encode(), f"{timestamp}.".encode() + raw, hashlib.sha256).hexdigest()
    resp = await client.post(
        WEBHOOK_URL, content=raw, headers={"Stripe-Signature": f"t={timestamp},v1={sig}"},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid JSON payload"


@pytest.mark.asyncio
async def test_events_log_shows_processed_events(client: AsyncClient, bootstrap, add_pass):
    school = await bootstrap("stripe-wh-log")
    dance_pass = await add_pass(school)
    event = _completed_event(school, dance_pass, "user_stripe_log")
    await _post(client, event)

    resp = await client.get(
        "/v1/maintenance/events", params={"provider": "stripe"}, headers=school["headers"],
    )
    assert resp.status_code == 200
    events = resp.json()
    assert [e["event_id"] for e in events] == [event["id"]]
    assert events[0]["status"] == "success"
    assert events[0]["details"]["created"] is True


@pytest.mark.asyncio
async def test_non_ascii_signature_rejected(client: AsyncClient):
    body = json.dumps({"id": "evt_non_ascii", "type": "checkout.session.completed"}).encode()
    timestamp = int(time.time())
    resp = await client.post(WEBHOOK_URL, content=body, headers={
        "Stripe-Signature": f"t={timestamp},v1=".encode() + "blåbær".encode(),
        "Content-Type": "application/json",
    })
    assert resp.status_code == 400
    assert "signature verification failed" in resp.json()["detail"]
