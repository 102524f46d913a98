"""FastAPI dependencies for authentication and tenant resolution."""

import uuid
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from dancedesk.core.database import get_session
from dancedesk.core.security import decode_jwt, hash_api_token
from dancedesk.models.api_token import ApiToken
from dancedesk.models.base import utcnow
from dancedesk.models.user import User, UserRole

bearer_scheme = HTTPBearer()


class AuthContext:
    """Resolved identity carried through a request."""

    __slots__ = ("tenant_id", "user_id", "token_id", "user_role")

    def __init__(
        self,
        tenant_id: uuid.UUID,
        user_id: uuid.UUID,
        user_role: str,
        token_id: uuid.UUID | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.user_id = user_id
        self.user_role = user_role
        self.token_id = token_id

    @property
    def is_admin(self) -> bool:
        return self.user_role == UserRole.ADMIN


def _context_for(user: User | None, token_id: uuid.UUID | None = None) -> AuthContext:
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is disabled or awaiting approval",
        )
    if user.tenant_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is not attached to a school",
        )
    return AuthContext(
        tenant_id=user.tenant_id,
        user_id=user.id,
        user_role=user.role,
        token_id=token_id,
    )


async def _resolve_api_token(
    raw_token: str, session: AsyncSession
) -> AuthContext:
    """Look up an API token by its SHA-256 hash."""
    token_hash = hash_api_token(raw_token)
    stmt = select(ApiToken).where(
        ApiToken.token_hash == token_hash,
        ApiToken.is_active.is_(True),  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    api_token = result.scalar_one_or_none()

    if api_token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or revoked API token",
        )

    if api_token.expires_at and api_token.expires_at < utcnow():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API token has expired",
        )

    user = await session.get(User, api_token.user_id)
    ctx = _context_for(user, token_id=api_token.id)

    api_token.last_used_at = utcnow()
    session.add(api_token)
    await session.commit()
    return ctx


async def _resolve_jwt(token: str, session: AsyncSession) -> AuthContext:
    """Decode an identity-provider JWT and load the user behind ``sub``."""
    try:
        payload = decode_jwt(token)
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired JWT",
        ) from exc

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Malformed JWT payload",
        )
    result = await session.execute(select(User).where(User.auth_subject == subject))
    return _context_for(result.scalar_one_or_none())


async def get_auth_context(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> AuthContext:
    """Resolve a bearer token to an AuthContext.

    Supports two token types:
    - API tokens (opaque, ~43 chars from token_urlsafe(32))
    - identity-provider JWTs (contain dots: header.payload.signature)
    """
    raw = credentials.credentials

    if "." in raw:
        return await _resolve_jwt(raw, session)
    return await _resolve_api_token(raw, session)


def require_admin(auth: AuthContext) -> None:
    """Raise 403 unless the caller is a school admin."""
    if not auth.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only school admins can do this",
        )


# Typed shorthand for use in route signatures
Auth = Annotated[AuthContext, Depends(get_auth_context)]
Session = Annotated[AsyncSession, Depends(get_session)]
