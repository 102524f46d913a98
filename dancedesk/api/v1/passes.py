"""Passes: the products a school sells; admins manage, students browse."""

import uuid

from fastapi import APIRouter, HTTPException, status
from sqlmodel import select

from dancedesk.api.deps import Auth, Session, require_admin
from dancedesk.models.base import utcnow
from dancedesk.models.dance_pass import Pass, PassCreate, PassRead, PassUpdate
from dancedesk.models.tenant import Tenant, TenantStatus
from dancedesk.services.passes import is_purchasable, validation_problems

router = APIRouter(prefix="/passes", tags=["passes"])


@router.get("/public/{tenant_slug}", response_model=list[PassRead])
async def list_public_passes(tenant_slug: str, session: Session) -> list[PassRead]:
    """Purchasable passes of a school, for its sign-up and shop pages."""
    result = await session.execute(select(Tenant).where(Tenant.slug == tenant_slug))
    tenant = result.scalar_one_or_none()
    if tenant is None or tenant.status != TenantStatus.ACTIVE:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="School not found")
    return await _purchasable(tenant.id, session)


@router.post("", response_model=PassRead, status_code=status.HTTP_201_CREATED)
async def create_pass(
    body: PassCreate,
    auth: Auth,
    session: Session,
) -> PassRead:
    require_admin(auth)
    dance_pass = Pass(tenant_id=auth.tenant_id, **body.model_dump())
    session.add(dance_pass)
    await session.commit()
    await session.refresh(dance_pass)
    return PassRead.model_validate(dance_pass)


@router.get("", response_model=list[PassRead])
async def list_passes(
    auth: Auth,
    session: Session,
    include_inactive: bool = False,
) -> list[PassRead]:
    """Admins see the whole catalogue; students only what they can buy."""
    if not auth.is_admin:
        return await _purchasable(auth.tenant_id, session)

    stmt = select(Pass).where(Pass.tenant_id == auth.tenant_id)
    if not include_inactive:
        stmt = stmt.where(Pass.is_active.is_(True))  # type: ignore[union-attr]
    stmt = stmt.order_by(Pass.price.asc())  # type: ignore[union-attr]
    result = await session.execute(stmt)
    return [PassRead.model_validate(p) for p in result.scalars().all()]


@router.get("/{pass_id}", response_model=PassRead)
async def get_pass(
    pass_id: uuid.UUID,
    auth: Auth,
    session: Session,
) -> PassRead:
    dance_pass = await _get_or_404(pass_id, auth.tenant_id, session)
    return PassRead.model_validate(dance_pass)


@router.patch("/{pass_id}", response_model=PassRead)
async def update_pass(
    pass_id: uuid.UUID,
    body: PassUpdate,
    auth: Auth,
    session: Session,
) -> PassRead:
    require_admin(auth)
    dance_pass = await _get_or_404(pass_id, auth.tenant_id, session)

    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(dance_pass, field, value)
    problems = validation_problems(dance_pass)
    if problems:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail="; ".join(problems),
        )

    dance_pass.updated_at = utcnow()
    session.add(dance_pass)
    await session.commit()
    await session.refresh(dance_pass)
    return PassRead.model_validate(dance_pass)


@router.delete("/{pass_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_pass(
    pass_id: uuid.UUID,
    auth: Auth,
    session: Session,
) -> None:
    """Passes are never deleted; existing subscriptions still point at them."""
    require_admin(auth)
    dance_pass = await _get_or_404(pass_id, auth.tenant_id, session)
    dance_pass.is_active = False
    dance_pass.updated_at = utcnow()
    session.add(dance_pass)
    await session.commit()


# ── Internal helpers ──────────────────────────────────────────

async def _purchasable(tenant_id: uuid.UUID, session) -> list[PassRead]:
    result = await session.execute(
        select(Pass)
        .where(Pass.tenant_id == tenant_id, Pass.is_active.is_(True))  # type: ignore[union-attr]
        .order_by(Pass.price.asc())  # type: ignore[union-attr]
    )
    now = utcnow()
    return [
        PassRead.model_validate(p)
        for p in result.scalars().all()
        if is_purchasable(p, now) and not validation_problems(p)
    ]


async def _get_or_404(pass_id: uuid.UUID, tenant_id: uuid.UUID, session) -> Pass:
    result = await session.execute(
        select(Pass).where(Pass.id == pass_id, Pass.tenant_id == tenant_id)
    )
    dance_pass = result.scalar_one_or_none()
    if dance_pass is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Pass not found")
    return dance_pass
