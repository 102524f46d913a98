"""FastAPI application entrypoint."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dancedesk.api.v1 import v1_router
from dancedesk.core.config import get_settings
from dancedesk.core.database import init_db

_settings = get_settings()

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    await init_db()
    logger.info(
        "DanceDesk API started (stripe=%s, vipps=%s)",
        bool(_settings.stripe_secret_key),
        bool(_settings.vipps_client_id),
    )
    yield


app = FastAPI(
    title="DanceDesk",
    version="0.1.0",
    description="Multi-tenant dance school backend: passes, classes, bookings, payments",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _settings.allowed_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(v1_router)


@app.get("/health", tags=["system"])
async def liveness() -> dict:
    """Process liveness only; /v1/system/health checks the backing services."""
    return {"status": "ok"}
