"""Shared test fixtures: async SQLite in-memory DB + test client."""

import base64
import os
from collections.abc import AsyncGenerator

# Settings are read at import time by the security and system modules.
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_stripe_secret")
os.environ.setdefault(
    "IDENTITY_WEBHOOK_SECRET",
    "whsec_" + base64.b64encode(b"identity-test-signing-key").decode(),
)

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

# Import all models so metadata is populated
import dancedesk.models  # noqa: E402, F401
from dancedesk.core import cache  # noqa: E402
from dancedesk.core.database import get_session  # noqa: E402
from dancedesk.core.security import create_jwt  # noqa: E402
from dancedesk.main import app  # noqa: E402


@pytest.fixture(scope="session")
async def engine():
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture(scope="session")
def test_session_factory(engine):
    """Session factory bound to the test SQLite engine."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(test_session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with test_session_factory() as sess:
        yield sess
        await sess.rollback()


@pytest.fixture
async def client(session) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client with DB session override."""

    async def _override_session():
        yield session

    app.dependency_overrides[get_session] = _override_session
    cache.clear()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    cache.clear()


@pytest.fixture
def bootstrap(client):
    """Register a school; returns its tenant, owner and admin headers."""

    async def _bootstrap(slug: str, **extra) -> dict:
        resp = await client.post("/v1/tenants", json={
            "tenant_name": f"{slug} Dance",
            "tenant_slug": slug,
            "contact_email": f"hello@{slug}.no",
            "owner_subject": f"user_owner_{slug}",
            "owner_email": f"owner@{slug}.no",
            "owner_name": "Studio Owner",
            **extra,
        })
        assert resp.status_code == 201, resp.text
        data = resp.json()
        return {
            "tenant": data["tenant"],
            "owner": data["owner"],
            "headers": {"Authorization": f"Bearer {data['api_token']}"},
        }

    return _bootstrap


@pytest.fixture
def add_student(client):
    """Create a student at a school and return it with JWT headers."""

    async def _add_student(school: dict, subject: str, role: str = "student") -> dict:
        resp = await client.post("/v1/users", json={
            "auth_subject": subject,
            "email": f"{subject}@example.com",
            "name": subject.replace("_", " ").title(),
            "role": role,
        }, headers=school["headers"])
        assert resp.status_code == 201, resp.text
        return {
            "user": resp.json(),
            "headers": {"Authorization": f"Bearer {create_jwt(subject)}"},
        }

    return _add_student


@pytest.fixture
def add_pass(client):
    """Create a pass at a school; defaults to a 10-clip card valid 90 days."""

    async def _add_pass(school: dict, **fields) -> dict:
        body = {
            "name": "10-klippekort",
            "type": "multi",
            "price": 1200.0,
            "validity_type": "days",
            "validity_days": 90,
            "classes_limit": 10,
            **fields,
        }
        resp = await client.post("/v1/passes", json=body, headers=school["headers"])
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _add_pass
