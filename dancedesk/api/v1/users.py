"""Users: tenant-scoped; admins manage, everyone can read themselves."""

import uuid

from fastapi import APIRouter, HTTPException, status
from sqlmodel import select

from dancedesk.api.deps import Auth, Session, require_admin
from dancedesk.models.api_token import ApiToken
from dancedesk.models.base import utcnow
from dancedesk.models.tenant import Tenant
from dancedesk.models.user import User, UserCreate, UserRead, UserRole, UserUpdate

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserRead)
async def get_me(auth: Auth, session: Session) -> UserRead:
    user = await _get_or_404(auth.user_id, auth.tenant_id, session)
    return UserRead.model_validate(user)


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate,
    auth: Auth,
    session: Session,
) -> UserRead:
    """Register someone who already has an identity-provider account."""
    require_admin(auth)

    result = await session.execute(select(User).where(User.auth_subject == body.auth_subject))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A user with this identity already exists",
        )

    user = User(
        auth_subject=body.auth_subject,
        tenant_id=auth.tenant_id,
        email=body.email,
        name=body.name,
        role=body.role,
        is_active=body.role != UserRole.PENDING,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return UserRead.model_validate(user)


@router.get("", response_model=list[UserRead])
async def list_users(
    auth: Auth,
    session: Session,
    role: UserRole | None = None,
) -> list[UserRead]:
    require_admin(auth)
    stmt = select(User).where(User.tenant_id == auth.tenant_id)
    if role is not None:
        stmt = stmt.where(User.role == role)
    stmt = stmt.order_by(User.email.asc())  # type: ignore[union-attr]
    result = await session.execute(stmt)
    return [UserRead.model_validate(u) for u in result.scalars().all()]


@router.patch("/{user_id}", response_model=UserRead)
async def update_user(
    user_id: uuid.UUID,
    body: UserUpdate,
    auth: Auth,
    session: Session,
) -> UserRead:
    require_admin(auth)
    user = await _get_or_404(user_id, auth.tenant_id, session)

    changes = body.model_dump(exclude_unset=True)
    demoting = changes.get("role") not in (None, UserRole.ADMIN)
    if demoting or changes.get("is_active") is False:
        await _guard_owner(user, session)

    for field, value in changes.items():
        setattr(user, field, value)
    if user.role == UserRole.PENDING:
        # Pending sign-ups cannot sign in until approved
        user.is_active = False
    if not user.is_active:
        await _revoke_tokens(user, session)

    user.updated_at = utcnow()
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return UserRead.model_validate(user)


@router.post("/{user_id}/approve", response_model=UserRead)
async def approve_user(
    user_id: uuid.UUID,
    auth: Auth,
    session: Session,
) -> UserRead:
    """Turn a pending sign-up into an active student."""
    require_admin(auth)
    user = await _get_or_404(user_id, auth.tenant_id, session)
    if user.role != UserRole.PENDING:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User is not awaiting approval",
        )
    user.role = UserRole.STUDENT
    user.is_active = True
    user.updated_at = utcnow()
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return UserRead.model_validate(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_user(
    user_id: uuid.UUID,
    auth: Auth,
    session: Session,
) -> None:
    require_admin(auth)
    user = await _get_or_404(user_id, auth.tenant_id, session)
    await _guard_owner(user, session)
    user.is_active = False
    await _revoke_tokens(user, session)
    user.updated_at = utcnow()
    session.add(user)
    await session.commit()


# ── Internal helpers ──────────────────────────────────────────

async def _guard_owner(user: User, session) -> None:
    """The school owner must stay an active admin so the school keeps a way in."""
    tenant = await session.get(Tenant, user.tenant_id)
    if tenant is not None and tenant.owner_id == user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The school owner cannot be demoted or deactivated",
        )


async def _revoke_tokens(user: User, session) -> None:
    result = await session.execute(
        select(ApiToken).where(ApiToken.user_id == user.id, ApiToken.is_active.is_(True))
    )
    for token in result.scalars().all():
        token.revoke()
        session.add(token)


async def _get_or_404(
    user_id: uuid.UUID, tenant_id: uuid.UUID, session
) -> User:
    stmt = select(User).where(
        User.id == user_id,
        User.tenant_id == tenant_id,
    )
    result = await session.execute(stmt)
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user
