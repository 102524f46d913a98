"""Booking rules end to end: seats, clips, refunds and class cancellation."""

import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlmodel import select

from dancedesk.models.base import utcnow
from dancedesk.models.booking import Booking
from dancedesk.services.bookings import cancel_booking


async def _one_off(client: AsyncClient, school: dict, capacity: int = 20, days: int = 3) -> dict:
    """A class taking place once, ``days`` from now; returns its instance."""
    when = (utcnow() + timedelta(days=days)).replace(hour=18, minute=0, second=0, microsecond=0)
    resp = await client.post("/v1/classes", json={
        "title": "Lindy Hop Social",
        "capacity": capacity,
        "single_class_date": when.isoformat(),
    }, headers=school["headers"])
    assert resp.status_code == 201, resp.text
    resp = await client.get(
        f"/v1/classes/{resp.json()['id']}/instances", headers=school["headers"],
    )
    return resp.json()[0]


async def _grant(client: AsyncClient, school: dict, student: dict, dance_pass: dict) -> dict:
    resp = await client.post("/v1/subscriptions", json={
        "user_id": student["user"]["id"],
        "pass_id": dance_pass["id"],
    }, headers=school["headers"])
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _clips(client: AsyncClient, school: dict, sub: dict) -> int | None:
    resp = await client.get(f"/v1/subscriptions/{sub['id']}", headers=school["headers"])
    return resp.json()["remaining_clips"]


async def _book(client: AsyncClient, student: dict, instance: dict):
    return await client.post(
        "/v1/bookings", json={"instance_id": instance["id"]}, headers=student["headers"],
    )


@pytest.mark.asyncio
async def test_book_uses_a_clip(client: AsyncClient, bootstrap, add_student, add_pass):
    school = await bootstrap("book-clip")
    student = await add_student(school, "user_book_clip")
    sub = await _grant(client, school, student, await add_pass(school))
    instance = await _one_off(client, school)

    resp = await _book(client, student, instance)
    assert resp.status_code == 201
    booking = resp.json()
    assert booking["status"] == "confirmed"
    assert booking["subscription_id"] == sub["id"]
    assert booking["booking_type"] == "clipcard"

    assert await _clips(client, school, sub) == 9
    resp = await client.get(f"/v1/instances/{instance['id']}", headers=student["headers"])
    assert resp.json()["booking_count"] == 1
    assert resp.json()["remaining_capacity"] == 19

    resp = await _book(client, student, instance)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Already booked this class"
    assert await _clips(client, school, sub) == 9


@pytest.mark.asyncio
async def test_cancel_refunds_and_allows_rebooking(
    client: AsyncClient, bootstrap, add_student, add_pass,
):
    school = await bootstrap("book-cancel")
    student = await add_student(school, "user_book_cancel")
    sub = await _grant(client, school, student, await add_pass(school))
    instance = await _one_off(client, school)

    booking = (await _book(client, student, instance)).json()
    resp = await client.post(f"/v1/bookings/{booking['id']}/cancel", headers=student["headers"])
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert resp.json()["clip_refunded"] is True
    assert await _clips(client, school, sub) == 10

    resp = await client.post(f"/v1/bookings/{booking['id']}/cancel", headers=student["headers"])
    assert resp.status_code == 400

    resp = await _book(client, student, instance)
    assert resp.status_code == 201
    assert resp.json()["id"] == booking["id"]
    assert resp.json()["clip_refunded"] is False
    assert await _clips(client, school, sub) == 9

    resp = await client.get(f"/v1/instances/{instance['id']}", headers=student["headers"])
    assert resp.json()["booking_count"] == 1


@pytest.mark.asyncio
async def test_cancel_after_start_keeps_the_clip(
    client: AsyncClient, session, bootstrap, add_student, add_pass,
):
    school = await bootstrap("book-late-cancel")
    student = await add_student(school, "user_book_late")
    sub = await _grant(client, school, student, await add_pass(school))
    instance = await _one_off(client, school)
    booking_id = (await _book(client, student, instance)).json()["id"]

    booking = await session.get(Booking, uuid.UUID(booking_id))
    late = utcnow() + timedelta(days=5)
    cancelled = await cancel_booking(session, booking, now=late)
    assert cancelled.clip_refunded is False
    assert await _clips(client, school, sub) == 9


@pytest.mark.asyncio
async def test_booking_needs_a_subscription(client: AsyncClient, bootstrap, add_student):
    school = await bootstrap("book-no-sub")
    student = await add_student(school, "user_book_no_sub")
    instance = await _one_off(client, school)

    resp = await _book(client, student, instance)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No valid subscription or clips remaining"


@pytest.mark.asyncio
async def test_used_up_clip_card(client: AsyncClient, bootstrap, add_student, add_pass):
    school = await bootstrap("book-used-up")
    student = await add_student(school, "user_book_used_up")
    await _grant(client, school, student, await add_pass(school, classes_limit=1))

    first = await _one_off(client, school, days=2)
    second = await _one_off(client, school, days=4)
    assert (await _book(client, student, first)).status_code == 201
    resp = await _book(client, student, second)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No valid subscription or clips remaining"


@pytest.mark.asyncio
async def test_full_class(client: AsyncClient, bootstrap, add_student, add_pass):
    school = await bootstrap("book-full")
    dance_pass = await add_pass(school)
    first = await add_student(school, "user_book_full_1")
    second = await add_student(school, "user_book_full_2")
    first_sub = await _grant(client, school, first, dance_pass)
    second_sub = await _grant(client, school, second, dance_pass)
    instance = await _one_off(client, school, capacity=1)

    assert (await _book(client, first, instance)).status_code == 201
    resp = await _book(client, second, instance)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Class is full"
    assert await _clips(client, school, first_sub) == 9
    assert await _clips(client, school, second_sub) == 10


@pytest.mark.asyncio
async def test_pending_student_cannot_book(client: AsyncClient, bootstrap, add_student, add_pass):
    school = await bootstrap("book-pending")
    student = await add_student(school, "user_book_pending", role="pending")
    await _grant(client, school, student, await add_pass(school))
    instance = await _one_off(client, school)

    # Pending accounts cannot even authenticate
    resp = await _book(client, student, instance)
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_unlimited_pass_is_used_first(
    client: AsyncClient, bootstrap, add_student, add_pass,
):
    school = await bootstrap("book-unlimited")
    student = await add_student(school, "user_book_unlimited")
    clip_sub = await _grant(client, school, student, await add_pass(school))
    unlimited = await add_pass(
        school, name="Månedskort", type="unlimited", classes_limit=None, validity_days=30,
    )
    unlimited_sub = await _grant(client, school, student, unlimited)
    instance = await _one_off(client, school)

    resp = await _book(client, student, instance)
    assert resp.json()["subscription_id"] == unlimited_sub["id"]
    assert resp.json()["booking_type"] == "monthly"
    assert await _clips(client, school, clip_sub) == 10
    assert await _clips(client, school, unlimited_sub) is None


@pytest.mark.asyncio
async def test_cancel_instance_refunds_everyone(
    client: AsyncClient, bootstrap, add_student, add_pass,
):
    school = await bootstrap("book-cancel-instance")
    dance_pass = await add_pass(school)
    students = [await add_student(school, f"user_book_ci_{i}") for i in range(2)]
    subs = [await _grant(client, school, s, dance_pass) for s in students]
    instance = await _one_off(client, school)
    for student in students:
        assert (await _book(client, student, instance)).status_code == 201

    resp = await client.post(
        f"/v1/instances/{instance['id']}/cancel",
        json={"reason": "Instructor is ill"},
        headers=students[0]["headers"],
    )
    assert resp.status_code == 403

    resp = await client.post(
        f"/v1/instances/{instance['id']}/cancel",
        json={"reason": "Instructor is ill"},
        headers=school["headers"],
    )
    assert resp.status_code == 200
    assert resp.json() == {"instances_cancelled": 1, "bookings_cancelled": 2}

    for sub in subs:
        assert await _clips(client, school, sub) == 10

    resp = await client.get(f"/v1/instances/{instance['id']}", headers=school["headers"])
    assert resp.json()["is_cancelled"] is True
    assert resp.json()["cancellation_reason"] == "Instructor is ill"
    assert resp.json()["booking_count"] == 0

    resp = await _book(client, students[0], instance)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Class is cancelled"

    resp = await client.post(
        f"/v1/instances/{instance['id']}/cancel", json={}, headers=school["headers"],
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_cancel_entire_series(client: AsyncClient, bootstrap, add_student, add_pass):
    school = await bootstrap("book-cancel-series")
    student = await add_student(school, "user_book_series")
    sub = await _grant(client, school, student, await add_pass(school))
    resp = await client.post("/v1/classes", json={
        "title": "Zouk Weekly",
        "is_recurring": True,
        "recurrence_start": utcnow().date().isoformat(),
        "weekly_schedule": [{"day_of_week": "wednesday", "start_time": "20:00"}],
    }, headers=school["headers"])
    class_id = resp.json()["id"]
    resp = await client.get(f"/v1/classes/{class_id}/instances", headers=school["headers"])
    instances = resp.json()
    assert len(instances) >= 7

    assert (await _book(client, student, instances[1])).status_code == 201
    resp = await client.post(
        f"/v1/instances/{instances[0]['id']}/cancel",
        json={"entire_series": True},
        headers=school["headers"],
    )
    assert resp.status_code == 200
    assert resp.json() == {"instances_cancelled": len(instances), "bookings_cancelled": 1}
    assert await _clips(client, school, sub) == 10

    resp = await client.get(f"/v1/classes/{class_id}/instances", headers=school["headers"])
    assert all(i["is_cancelled"] for i in resp.json())
    assert all(i["cancellation_reason"] == "Series cancelled by admin" for i in resp.json())


@pytest.mark.asyncio
async def test_booking_lists(client: AsyncClient, bootstrap, add_student, add_pass):
    school = await bootstrap("book-lists")
    dance_pass = await add_pass(school)
    alice = await add_student(school, "user_book_alice")
    bob = await add_student(school, "user_book_bob")
    await _grant(client, school, alice, dance_pass)
    await _grant(client, school, bob, dance_pass)
    instance = await _one_off(client, school)
    await _book(client, alice, instance)
    bob_booking = (await _book(client, bob, instance)).json()
    await client.post(f"/v1/bookings/{bob_booking['id']}/cancel", headers=bob["headers"])

    resp = await client.get("/v1/bookings", headers=alice["headers"])
    assert [b["user_id"] for b in resp.json()] == [alice["user"]["id"]]

    # Students only ever see their own bookings
    resp = await client.get(
        f"/v1/bookings?user_id={bob['user']['id']}", headers=alice["headers"],
    )
    assert [b["user_id"] for b in resp.json()] == [alice["user"]["id"]]

    resp = await client.get("/v1/bookings?include_cancelled=true", headers=school["headers"])
    assert len(resp.json()) == 2

    resp = await client.get(
        f"/v1/instances/{instance['id']}/bookings", headers=school["headers"],
    )
    assert [b["status"] for b in resp.json()] == ["confirmed", "cancelled"]

    resp = await client.get(
        f"/v1/instances/{instance['id']}/bookings", headers=alice["headers"],
    )
    assert resp.status_code == 403

    resp = await client.post(f"/v1/bookings/{bob_booking['id']}/cancel", headers=alice["headers"])
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_bookings_are_tenant_scoped(client: AsyncClient, bootstrap, add_student, add_pass):
    home = await bootstrap("book-iso-home")
    away = await bootstrap("book-iso-away")
    student = await add_student(home, "user_book_iso")
    await _grant(client, home, student, await add_pass(home))
    foreign = await _one_off(client, away)

    resp = await _book(client, student, foreign)
    assert resp.status_code == 404

    result = await client.get("/v1/bookings", headers=away["headers"])
    assert result.json() == []
