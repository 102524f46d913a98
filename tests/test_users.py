"""Tests for users CRUD endpoints."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_list_users(client: AsyncClient, bootstrap, add_student):
    """Admin can list users and sees at least themselves."""
    school = await bootstrap("users-list")
    await add_student(school, "user_list_student")
    await add_student(school, "user_list_waiting", role="pending")

    resp = await client.get("/v1/users", headers=school["headers"])
    assert resp.status_code == 200
    users = resp.json()
    assert len(users) == 3
    assert any(u["email"] == "owner@users-list.no" for u in users)

    resp = await client.get("/v1/users?role=pending", headers=school["headers"])
    assert [u["auth_subject"] for u in resp.json()] == ["user_list_waiting"]


@pytest.mark.asyncio
async def test_create_user(client: AsyncClient, bootstrap):
    school = await bootstrap("users-create")
    resp = await client.post("/v1/users", json={
        "auth_subject": "user_create_member",
        "email": "member@users-create.no",
        "name": "Test Member",
    }, headers=school["headers"])
    assert resp.status_code == 201
    data = resp.json()
    assert data["email"] == "member@users-create.no"
    assert data["role"] == "student"
    assert data["is_active"] is True
    assert data["tenant_id"] == school["tenant"]["id"]


@pytest.mark.asyncio
async def test_create_duplicate_subject_rejected(client: AsyncClient, bootstrap):
    """One identity-provider account maps to exactly one user."""
    school = await bootstrap("users-dup")
    other = await bootstrap("users-dup-other")
    user_data = {"auth_subject": "user_dup_once", "email": "dup@users-dup.no"}

    resp = await client.post("/v1/users", json=user_data, headers=school["headers"])
    assert resp.status_code == 201
    resp = await client.post("/v1/users", json=user_data, headers=school["headers"])
    assert resp.status_code == 409
    resp = await client.post("/v1/users", json=user_data, headers=other["headers"])
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_students_cannot_manage_users(client: AsyncClient, bootstrap, add_student):
    school = await bootstrap("users-student")
    student = await add_student(school, "user_student_plain")

    resp = await client.get("/v1/users", headers=student["headers"])
    assert resp.status_code == 403
    resp = await client.post("/v1/users", json={"auth_subject": "user_sneaky"}, headers=student["headers"])
    assert resp.status_code == 403

    resp = await client.get("/v1/users/me", headers=student["headers"])
    assert resp.status_code == 200
    assert resp.json()["auth_subject"] == "user_student_plain"


@pytest.mark.asyncio
async def test_update_user(client: AsyncClient, bootstrap, add_student):
    school = await bootstrap("users-update")
    student = await add_student(school, "user_update_me")
    user_id = student["user"]["id"]

    resp = await client.patch(f"/v1/users/{user_id}", json={
        "name": "Promoted Teacher", "role": "admin",
    }, headers=school["headers"])
    assert resp.status_code == 200
    assert resp.json()["name"] == "Promoted Teacher"
    assert resp.json()["role"] == "admin"

    # The new admin can now list users
    resp = await client.get("/v1/users", headers=student["headers"])
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_approve_user(client: AsyncClient, bootstrap, add_student):
    school = await bootstrap("users-approve")
    waiting = await add_student(school, "user_approve_me", role="pending")
    assert waiting["user"]["is_active"] is False

    resp = await client.get("/v1/users/me", headers=waiting["headers"])
    assert resp.status_code == 401

    resp = await client.post(
        f"/v1/users/{waiting['user']['id']}/approve", headers=school["headers"],
    )
    assert resp.status_code == 200
    assert resp.json()["role"] == "student"
    assert resp.json()["is_active"] is True

    resp = await client.get("/v1/users/me", headers=waiting["headers"])
    assert resp.status_code == 200

    resp = await client.post(
        f"/v1/users/{waiting['user']['id']}/approve", headers=school["headers"],
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_deactivate_user(client: AsyncClient, bootstrap, add_student):
    """Admin can deactivate a user; the user can no longer sign in."""
    school = await bootstrap("users-deact")
    student = await add_student(school, "user_deact_victim")
    user_id = student["user"]["id"]

    resp = await client.delete(f"/v1/users/{user_id}", headers=school["headers"])
    assert resp.status_code == 204

    resp = await client.get("/v1/users", headers=school["headers"])
    victim = next(u for u in resp.json() if u["id"] == user_id)
    assert victim["is_active"] is False

    resp = await client.get("/v1/users/me", headers=student["headers"])
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_users_are_tenant_scoped(client: AsyncClient, bootstrap, add_student):
    school_a = await bootstrap("users-iso-a")
    school_b = await bootstrap("users-iso-b")
    student = await add_student(school_a, "user_iso_a")

    resp = await client.patch(
        f"/v1/users/{student['user']['id']}", json={"name": "Hijacked"},
        headers=school_b["headers"],
    )
    assert resp.status_code == 404
    resp = await client.delete(f"/v1/users/{student['user']['id']}", headers=school_b["headers"])
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_owner_stays_admin(client: AsyncClient, bootstrap):
    school = await bootstrap("users-owner-guard")
    owner_id = school["owner"]["id"]

    resp = await client.patch(
        f"/v1/users/{owner_id}", json={"role": "student"}, headers=school["headers"],
    )
    assert resp.status_code == 400
    resp = await client.delete(f"/v1/users/{owner_id}", headers=school["headers"])
    assert resp.status_code == 400

    resp = await client.patch(
        f"/v1/users/{owner_id}", json={"name": "Still In Charge"}, headers=school["headers"],
    )
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_deactivation_revokes_api_tokens(client: AsyncClient, bootstrap, add_student):
    school = await bootstrap("users-revoke-tokens")
    colleague = await add_student(school, "user_revoke_colleague", role="admin")
    resp = await client.post(
        "/v1/api-tokens", json={"name": "colleague-laptop"}, headers=colleague["headers"],
    )
    assert resp.status_code == 201
    token_id = resp.json()["id"]

    resp = await client.patch(
        f"/v1/users/{colleague['user']['id']}", json={"role": "pending"},
        headers=school["headers"],
    )
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False

    resp = await client.get("/v1/api-tokens", headers=school["headers"])
    token = next(t for t in resp.json() if t["id"] == token_id)
    assert token["is_active"] is False
    assert token["revoked_at"] is not None
