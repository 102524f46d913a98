"""ARQ worker entrypoint."""

import asyncio

from arq import cron
from arq.connections import RedisSettings

from dancedesk.core.config import get_settings
from dancedesk.workers.maintenance import (
    consistency_check_job,
    expire_subscriptions_job,
    generate_instances_job,
)
from dancedesk.workers.reconcile import reconcile_payments


def _redis_settings() -> RedisSettings:
    """Parse REDIS_URL into ARQ RedisSettings."""
    return RedisSettings.from_dsn(get_settings().redis_url)


async def startup(ctx: dict) -> None:
    """Called when the worker starts."""
    from dancedesk.core.database import init_db
    await init_db()


async def shutdown(ctx: dict) -> None:
    """Called when the worker shuts down."""


class WorkerSettings:
    """ARQ worker configuration."""
    functions = [
        reconcile_payments,
        expire_subscriptions_job,
        generate_instances_job,
        consistency_check_job,
    ]
    cron_jobs = [
        cron(reconcile_payments, minute={0, 15, 30, 45}),
        cron(expire_subscriptions_job, minute=5),
        cron(generate_instances_job, hour=2, minute=0),
        cron(consistency_check_job, hour=3, minute=30),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = _redis_settings()
    max_jobs = 4
    job_timeout = 900


if __name__ == "__main__":
    from arq import run_worker
    asyncio.run(run_worker(WorkerSettings))  # type: ignore[arg-type]
