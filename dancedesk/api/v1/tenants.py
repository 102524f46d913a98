"""Tenant registration (bootstrap), settings and Stripe Connect status."""

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from dancedesk.api.deps import Auth, Session, require_admin
from dancedesk.models.api_token import issue_api_token
from dancedesk.models.base import utcnow
from dancedesk.models.tenant import ConnectStatus, Tenant, TenantRead, TenantUpdate
from dancedesk.models.user import User, UserRead, UserRole
from dancedesk.services import stripe_api
from dancedesk.services.errors import ProviderError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tenants", tags=["tenants"])


# ── Bootstrap request / response schemas ──────────────────────

class TenantBootstrapRequest(BaseModel):
    """Everything needed to create a school + its admin in one call."""
    tenant_name: str = Field(max_length=255)
    tenant_slug: str = Field(max_length=100, pattern=r"^[a-z0-9\-]+$")
    contact_email: EmailStr
    owner_subject: str = Field(min_length=1, max_length=255)
    owner_email: EmailStr
    owner_name: str = Field(default="", max_length=255)
    timezone: str = Field(default="Europe/Oslo", max_length=64)
    currency: str = Field(default="NOK", min_length=3, max_length=3)


class TenantBootstrapResponse(BaseModel):
    tenant: TenantRead
    owner: UserRead
    api_token: str = Field(description="Shown once; store it securely")
    token_prefix: str


def _check_timezone(name: str) -> None:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"Unknown timezone: {name}",
        ) from None


# ── Routes ────────────────────────────────────────────────────

@router.post(
    "",
    response_model=TenantBootstrapResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new school (bootstrap)",
)
async def bootstrap_tenant(
    body: TenantBootstrapRequest,
    session: Session,
) -> TenantBootstrapResponse:
    """Create a tenant, its admin user, and an initial API token.

    The raw API token is returned once and the caller must store it.
    """
    _check_timezone(body.timezone)

    existing = await session.execute(
        select(Tenant).where(Tenant.slug == body.tenant_slug)
    )
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Slug '{body.tenant_slug}' is already taken",
        )
    owner = await session.execute(
        select(User).where(User.auth_subject == body.owner_subject)
    )
    if owner.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Owner already has an account",
        )

    tenant = Tenant(
        name=body.tenant_name,
        slug=body.tenant_slug,
        contact_email=body.contact_email,
        timezone=body.timezone,
        currency=body.currency.upper(),
    )
    session.add(tenant)
    await session.flush()

    user = User(
        auth_subject=body.owner_subject,
        tenant_id=tenant.id,
        email=body.owner_email,
        name=body.owner_name,
        role=UserRole.ADMIN,
    )
    session.add(user)
    await session.flush()
    tenant.owner_id = user.id

    token, raw_token = issue_api_token(tenant.id, user.id, "default")
    session.add(token)
    await session.commit()
    await session.refresh(tenant)
    await session.refresh(user)
    logger.info("Registered tenant %s (%s)", tenant.slug, tenant.id)

    return TenantBootstrapResponse(
        tenant=TenantRead.model_validate(tenant),
        owner=UserRead.model_validate(user),
        api_token=raw_token,
        token_prefix=token.token_prefix,
    )


@router.get(
    "/me",
    response_model=TenantRead,
    summary="Get current tenant info",
)
async def get_current_tenant(
    auth: Auth,
    session: Session,
) -> TenantRead:
    tenant = await _get_tenant_or_404(auth, session)
    return TenantRead.model_validate(tenant)


@router.patch("/me", response_model=TenantRead)
async def update_current_tenant(
    body: TenantUpdate,
    auth: Auth,
    session: Session,
) -> TenantRead:
    require_admin(auth)
    tenant = await _get_tenant_or_404(auth, session)

    update_data = body.model_dump(exclude_unset=True)
    if update_data.get("timezone"):
        _check_timezone(update_data["timezone"])
    if "currency" in update_data and update_data["currency"]:
        update_data["currency"] = update_data["currency"].upper()
    if "stripe_account_id" in update_data:
        account_id = update_data["stripe_account_id"] or None
        update_data["stripe_account_id"] = account_id
        if account_id != tenant.stripe_account_id:
            tenant.stripe_account_status = (
                ConnectStatus.PENDING if account_id else ConnectStatus.NOT_CONNECTED
            )
    for field, value in update_data.items():
        if value is not None or field == "stripe_account_id":
            setattr(tenant, field, value)

    tenant.updated_at = utcnow()
    session.add(tenant)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Stripe account is already connected to another school",
        ) from None
    await session.refresh(tenant)
    return TenantRead.model_validate(tenant)


@router.post("/me/stripe-connect/refresh", response_model=TenantRead)
async def refresh_stripe_connect(
    auth: Auth,
    session: Session,
) -> TenantRead:
    """Re-read the Connect account from Stripe and update its status."""
    require_admin(auth)
    tenant = await _get_tenant_or_404(auth, session)
    if not tenant.stripe_account_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No Stripe account connected",
        )

    try:
        account = await stripe_api.retrieve_account(tenant.stripe_account_id)
    except ProviderError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    ready = account.get("charges_enabled") and account.get("details_submitted")
    tenant.stripe_account_status = ConnectStatus.ACTIVE if ready else ConnectStatus.PENDING
    tenant.updated_at = utcnow()
    session.add(tenant)
    await session.commit()
    await session.refresh(tenant)
    logger.info(
        "Stripe account %s for tenant %s is %s",
        tenant.stripe_account_id, tenant.slug, tenant.stripe_account_status,
    )
    return TenantRead.model_validate(tenant)


# ── Internal helper ───────────────────────────────────────────

async def _get_tenant_or_404(auth, session) -> Tenant:
    tenant = await session.get(Tenant, auth.tenant_id)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return tenant
