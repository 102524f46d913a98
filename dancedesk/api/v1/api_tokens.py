"""API tokens a school admin issues for scripts and front-desk devices."""

import uuid

from fastapi import APIRouter, HTTPException, status
from sqlmodel import select

from dancedesk.api.deps import Auth, Session, require_admin
from dancedesk.models.api_token import (
    ApiToken,
    ApiTokenCreate,
    ApiTokenCreated,
    ApiTokenRead,
    issue_api_token,
)

router = APIRouter(prefix="/api-tokens", tags=["api-tokens"])


@router.post("", response_model=ApiTokenCreated, status_code=status.HTTP_201_CREATED)
async def create_api_token(body: ApiTokenCreate, auth: Auth, session: Session) -> ApiTokenCreated:
    """Issue a token acting as the calling admin. The raw value is only shown here."""
    require_admin(auth)
    token, raw = issue_api_token(auth.tenant_id, auth.user_id, body.name, body.expiry())
    session.add(token)
    await session.commit()
    await session.refresh(token)
    return ApiTokenCreated(**ApiTokenRead.model_validate(token).model_dump(), raw_token=raw)


@router.get("", response_model=list[ApiTokenRead])
async def list_api_tokens(
    auth: Auth,
    session: Session,
    include_revoked: bool = True,
) -> list[ApiToken]:
    require_admin(auth)
    stmt = select(ApiToken).where(ApiToken.tenant_id == auth.tenant_id)
    if not include_revoked:
        stmt = stmt.where(ApiToken.is_active.is_(True))  # type: ignore[union-attr]
    result = await session.execute(
        stmt.order_by(ApiToken.created_at.desc())  # type: ignore[union-attr]
    )
    return list(result.scalars().all())


@router.delete("/{token_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_api_token(token_id: uuid.UUID, auth: Auth, session: Session) -> None:
    """Revoke a token. The row is kept so the listing shows when it stopped working."""
    require_admin(auth)
    result = await session.execute(
        select(ApiToken).where(
            ApiToken.id == token_id,
            ApiToken.tenant_id == auth.tenant_id,
        )
    )
    token = result.scalar_one_or_none()
    if token is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Token not found")
    if token.is_active:
        token.revoke()
        session.add(token)
        await session.commit()
