"""
ARQ worker configuration and job definitions.

Run worker with: arq identity_core.tasks.worker.WorkerSettings
"""

from typing import Any

from arq import cron
from arq.connections import RedisSettings
from arq.worker import func

from identity_core.config import settings
from identity_core.core.container import build_services, sql_stores
from identity_core.core.database import AsyncSessionLocal
from identity_core.core.logging import configure_logging, get_logger
from identity_core.core.redis import create_redis_client
from identity_core.tasks.email_jobs import (
    send_invitation_email_job,
    send_password_reset_email_job,
    send_verification_email_job,
)
from identity_core.tasks.maintenance_jobs import purge_expired_tokens_job

logger = get_logger(__name__)


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup - build the stores the maintenance jobs use."""
    configure_logging()
    redis_client = create_redis_client() if settings.STATE_BACKEND == "redis" else None
    ctx["redis_client"] = redis_client
    ctx["services"] = build_services(
        settings, sql_stores(settings, AsyncSessionLocal, redis_client)
    )
    logger.info("arq_worker_starting", redis_url=settings.ARQ_REDIS_URL)


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown - cleanup resources."""
    redis_client = ctx.get("redis_client")
    if redis_client is not None:
        await redis_client.aclose()
    logger.info("arq_worker_shutdown")


class WorkerSettings:
    """ARQ worker configuration."""

    # Redis connection from settings
    redis_settings = RedisSettings.from_dsn(settings.ARQ_REDIS_URL)

    # Worker behavior
    max_jobs = 10  # Process up to 10 jobs concurrently
    job_timeout = 300  # 5 minutes max per job
    keep_result = settings.ARQ_KEEP_RESULT  # Keep results for 1 hour

    # Lifecycle hooks
    on_startup = startup
    on_shutdown = shutdown

    # Job functions
    functions = [
        func(send_verification_email_job, max_tries=settings.ARQ_MAX_TRIES),
        func(send_password_reset_email_job, max_tries=settings.ARQ_MAX_TRIES),
        func(send_invitation_email_job, max_tries=settings.ARQ_MAX_TRIES),
        func(purge_expired_tokens_job, max_tries=settings.ARQ_MAX_TRIES),
    ]

    cron_jobs = [
        cron(purge_expired_tokens_job, minute=0, run_at_startup=False),
    ]
