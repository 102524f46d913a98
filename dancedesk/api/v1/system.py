"""System health endpoint: checks connectivity to the backing services."""

import platform
import sys
import time
from urllib.parse import urlparse, urlunparse

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import func, text
from sqlmodel import select

from dancedesk.api.deps import Auth, Session, require_admin
from dancedesk.core.config import get_settings
from dancedesk.models.provider_event import EventStatus, ProviderEvent

router = APIRouter(prefix="/system", tags=["system"])

settings = get_settings()
_start_time = time.time()


class ServiceHealth(BaseModel):
    status: str  # "ok" or "error"
    detail: str | None = None
    version: str | None = None
    latency_ms: int | None = None


class HealthResponse(BaseModel):
    status: str
    database: ServiceHealth
    redis: ServiceHealth


class DetailedHealthResponse(HealthResponse):
    uptime_seconds: int
    python_version: str
    platform: str
    webhook_events: dict
    config: dict


@router.get("/health", response_model=HealthResponse)
async def system_health(session: Session) -> HealthResponse:
    """Check connectivity to the database and Redis (the job queue)."""
    db = await _check_database(session)
    rd = await _check_redis()
    overall = "ok" if db.status == "ok" and rd.status == "ok" else "degraded"
    return HealthResponse(status=overall, database=db, redis=rd)


@router.get("/health/detailed", response_model=DetailedHealthResponse)
async def system_health_detailed(auth: Auth, session: Session) -> DetailedHealthResponse:
    """Health plus inbound webhook outcomes for this school and a safe config subset."""
    require_admin(auth)
    db = await _check_database(session)
    rd = await _check_redis()
    overall = "ok" if db.status == "ok" and rd.status == "ok" else "degraded"

    result = await session.execute(
        select(ProviderEvent.status, func.count())
        .where(ProviderEvent.tenant_id == auth.tenant_id)
        .group_by(ProviderEvent.status)
    )
    by_status = {str(row[0]): row[1] for row in result.all()}
    for event_status in EventStatus:
        by_status.setdefault(event_status.value, 0)

    return DetailedHealthResponse(
        status=overall,
        database=db,
        redis=rd,
        uptime_seconds=int(time.time() - _start_time),
        python_version=sys.version.split()[0],
        platform=platform.platform(),
        webhook_events=by_status,
        config={
            "database_url": _mask_url(settings.database_url),
            "redis_url": _mask_url(settings.redis_url),
            "jwt_configured": bool(settings.jwt_secret_key),
            "stripe_configured": bool(settings.stripe_secret_key),
            "stripe_webhook_configured": bool(settings.stripe_webhook_secret),
            "identity_webhook_configured": bool(settings.identity_webhook_secret),
            "vipps_configured": bool(settings.vipps_client_id),
            "reconcile_lookback_days": settings.reconcile_lookback_days,
            "instance_horizon_days": settings.instance_horizon_days,
            "cors_origins": settings.allowed_origins,
        },
    )


def _mask_url(url: str) -> str:
    """Mask credentials in database/redis URLs."""
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = f"{parsed.username}:***@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


async def _check_database(session) -> ServiceHealth:
    try:
        t0 = time.monotonic()
        await session.execute(text("SELECT 1"))
        latency = int((time.monotonic() - t0) * 1000)
    except Exception as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])
    return ServiceHealth(status="ok", version=session.bind.dialect.name, latency_ms=latency)


async def _check_redis() -> ServiceHealth:
    try:
        from redis.asyncio import from_url
        t0 = time.monotonic()
        redis = from_url(settings.redis_url, decode_responses=True, socket_connect_timeout=2)
        pong = await redis.ping()
        latency = int((time.monotonic() - t0) * 1000)
        info = await redis.info("server")
        version = info.get("redis_version")
        await redis.aclose()
        return ServiceHealth(
            status="ok" if pong else "error",
            version=f"Redis {version}" if version else None,
            latency_ms=latency,
        )
    except Exception as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])
