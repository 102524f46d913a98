"""Tests for stats endpoints."""

from datetime import timedelta

import pytest
from httpx import AsyncClient

from dancedesk.models.base import utcnow


async def _school_with_activity(client: AsyncClient, bootstrap, add_student, add_pass, slug: str):
    """Two students (one pending), two granted passes and one booking."""
    school = await bootstrap(slug)
    student = await add_student(school, f"user_{slug}_active")
    await add_student(school, f"user_{slug}_waiting", role="pending")
    clip_card = await add_pass(school, price=1200.0)
    drop_in = await add_pass(school, name="Drop-in", type="single", price=250.0, classes_limit=None)

    for dance_pass in (clip_card, drop_in):
        resp = await client.post("/v1/subscriptions", json={
            "user_id": student["user"]["id"], "pass_id": dance_pass["id"],
        }, headers=school["headers"])
        assert resp.status_code == 201

    when = (utcnow() + timedelta(days=4)).replace(microsecond=0)
    resp = await client.post("/v1/classes", json={
        "title": "Reggaeton", "single_class_date": when.isoformat(),
    }, headers=school["headers"])
    resp = await client.get(
        f"/v1/classes/{resp.json()['id']}/instances", headers=school["headers"],
    )
    resp = await client.post(
        "/v1/bookings", json={"instance_id": resp.json()[0]["id"]}, headers=student["headers"],
    )
    assert resp.status_code == 201
    return school, student


@pytest.mark.asyncio
async def test_overview_empty(client: AsyncClient, bootstrap):
    school = await bootstrap("stats-empty")
    resp = await client.get("/v1/stats/overview", headers=school["headers"])
    assert resp.status_code == 200
    assert resp.json() == {
        "students": 0,
        "pending_students": 0,
        "active_subscriptions": 0,
        "upcoming_instances": 0,
        "confirmed_bookings": 0,
        "revenue_30d": 0.0,
    }


@pytest.mark.asyncio
async def test_overview_with_activity(client: AsyncClient, bootstrap, add_student, add_pass):
    school, _ = await _school_with_activity(
        client, bootstrap, add_student, add_pass, "stats-activity",
    )
    resp = await client.get("/v1/stats/overview", headers=school["headers"])
    data = resp.json()
    assert data["students"] == 1
    assert data["pending_students"] == 1
    assert data["active_subscriptions"] == 2
    assert data["upcoming_instances"] == 1
    assert data["confirmed_bookings"] == 1
    assert data["revenue_30d"] == 1450.0


@pytest.mark.asyncio
async def test_overview_cache_dropped_by_purchases(
    client: AsyncClient, bootstrap, add_student, add_pass,
):
    school = await bootstrap("stats-cache")
    dance_pass = await add_pass(school)
    resp = await client.get("/v1/stats/overview", headers=school["headers"])
    assert resp.json()["students"] == 0

    # Plain user changes are served from the cache until it expires
    student = await add_student(school, "user_stats_cache")
    resp = await client.get("/v1/stats/overview", headers=school["headers"])
    assert resp.json()["students"] == 0

    resp = await client.post("/v1/subscriptions", json={
        "user_id": student["user"]["id"], "pass_id": dance_pass["id"],
    }, headers=school["headers"])
    assert resp.status_code == 201
    resp = await client.get("/v1/stats/overview", headers=school["headers"])
    assert resp.json()["students"] == 1
    assert resp.json()["active_subscriptions"] == 1


@pytest.mark.asyncio
async def test_revenue_by_day(client: AsyncClient, bootstrap, add_student, add_pass):
    school, _ = await _school_with_activity(
        client, bootstrap, add_student, add_pass, "stats-revenue",
    )
    resp = await client.get("/v1/stats/revenue?days=7", headers=school["headers"])
    assert resp.status_code == 200
    rows = resp.json()
    assert len(rows) == 1
    assert rows[0]["date"] == utcnow().date().isoformat()
    assert rows[0]["provider"] == "manual"
    assert rows[0]["subscriptions"] == 2
    assert rows[0]["revenue"] == 1450.0


@pytest.mark.asyncio
async def test_stats_are_admin_only(client: AsyncClient, bootstrap, add_student, add_pass):
    school, student = await _school_with_activity(
        client, bootstrap, add_student, add_pass, "stats-forbidden",
    )
    resp = await client.get("/v1/stats/overview", headers=student["headers"])
    assert resp.status_code == 403
    resp = await client.get("/v1/stats/revenue", headers=student["headers"])
    assert resp.status_code == 403
