"""Identity-provider user events: keep local users in step with the IdP."""

from __future__ import annotations

import logging
import time
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from dancedesk.models.base import utcnow
from dancedesk.models.provider_event import EventProvider, EventStatus
from dancedesk.models.tenant import Tenant, TenantStatus
from dancedesk.models.user import User, UserRole, normalize_role
from dancedesk.services.ledger import close_event, open_event

logger = logging.getLogger(__name__)


def primary_email(data: dict) -> str:
    addresses = data.get("email_addresses") or []
    primary_id = data.get("primary_email_address_id")
    for entry in addresses:
        if entry.get("id") == primary_id:
            return entry.get("email_address", "")
    return addresses[0].get("email_address", "") if addresses else ""


def full_name(data: dict) -> str:
    parts = [data.get("first_name") or "", data.get("last_name") or ""]
    return " ".join(p for p in parts if p).strip()


def tenant_slug(data: dict) -> str | None:
    for key in ("public_metadata", "unsafe_metadata"):
        slug = (data.get(key) or {}).get("tenantSlug")
        if slug:
            return str(slug).strip().lower()
    return None


async def _user_by_subject(session: AsyncSession, subject: str) -> User | None:
    result = await session.execute(select(User).where(User.auth_subject == subject))
    return result.scalar_one_or_none()


async def _on_created(session: AsyncSession, data: dict) -> tuple[EventStatus, dict]:
    subject = data["id"]
    if await _user_by_subject(session, subject) is not None:
        return EventStatus.IGNORED, {"reason": "user already exists"}

    tenant: Tenant | None = None
    slug = tenant_slug(data)
    if slug:
        result = await session.execute(select(Tenant).where(Tenant.slug == slug))
        tenant = result.scalar_one_or_none()
        if tenant is None:
            logger.warning("User %s signed up for unknown tenant %s", subject, slug)
        elif tenant.status != TenantStatus.ACTIVE or not tenant.allow_public_registration:
            logger.info("Tenant %s does not accept registrations; skipping %s", slug, subject)
            return EventStatus.IGNORED, {"reason": "registration closed", "tenant_slug": slug}

    if tenant is None:
        role = UserRole.PENDING
    elif "role" in (data.get("public_metadata") or {}):
        role = normalize_role(data["public_metadata"]["role"])
    else:
        role = UserRole.PENDING if tenant.require_approval else UserRole.STUDENT

    user = User(
        auth_subject=subject,
        tenant_id=tenant.id if tenant else None,
        email=primary_email(data),
        name=full_name(data),
        role=role,
        is_active=role != UserRole.PENDING,
    )
    session.add(user)
    await session.commit()
    logger.info(
        "Created %s user %s for tenant %s", role, subject, tenant.slug if tenant else "-",
    )
    return EventStatus.SUCCESS, {
        "user_id": str(user.id),
        "tenant_id": str(tenant.id) if tenant else None,
        "role": role,
    }


async def _on_updated(session: AsyncSession, data: dict) -> tuple[EventStatus, dict]:
    user = await _user_by_subject(session, data["id"])
    if user is None:
        return EventStatus.IGNORED, {"reason": "unknown user"}
    user.email = primary_email(data) or user.email
    user.name = full_name(data) or user.name
    public = data.get("public_metadata") or {}
    if "role" in public:
        user.role = normalize_role(public["role"])
    user.updated_at = utcnow()
    session.add(user)
    await session.commit()
    return EventStatus.SUCCESS, {"user_id": str(user.id)}


async def _on_deleted(session: AsyncSession, data: dict) -> tuple[EventStatus, dict]:
    user = await _user_by_subject(session, data["id"])
    if user is None:
        return EventStatus.IGNORED, {"reason": "unknown user"}
    user.is_active = False
    user.updated_at = utcnow()
    session.add(user)
    await session.commit()
    logger.info("Deactivated user %s", user.id)
    return EventStatus.SUCCESS, {"user_id": str(user.id)}


_HANDLERS = {
    "user.created": _on_created,
    "user.updated": _on_updated,
    "user.deleted": _on_deleted,
}


async def process_identity_event(
    session: AsyncSession, msg_id: str, event: dict
) -> EventStatus | None:
    """Apply one verified identity event at most once; None if already handled."""
    event_type = event.get("type", "")
    ledger_id = await open_event(session, EventProvider.IDENTITY, msg_id, event_type)
    if ledger_id is None:
        return None

    started = time.monotonic()
    handler = _HANDLERS.get(event_type)
    data = event.get("data") or {}
    if handler is None or not data.get("id"):
        await close_event(
            session, ledger_id, EventStatus.IGNORED,
            details={"reason": "unhandled event"}, started=started,
        )
        return EventStatus.IGNORED

    try:
        status, details = await handler(session, data)
    except Exception as exc:
        await session.rollback()
        logger.exception("Failed to process identity event %s", msg_id)
        await close_event(
            session, ledger_id, EventStatus.ERROR,
            error=str(exc) or type(exc).__name__, started=started,
        )
        raise

    details["subject"] = data["id"]
    tenant_id = uuid.UUID(details["tenant_id"]) if details.get("tenant_id") else None
    await close_event(
        session, ledger_id, status, details=details, tenant_id=tenant_id, started=started,
    )
    return status
