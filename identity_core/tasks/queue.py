"""
arq queue client used by request handlers.

The pool is created lazily on first enqueue. Enqueueing is best-effort: a
Redis outage must never fail the request that triggered the job, so errors
are logged and reported as a missing job id.
"""

import asyncio
from typing import Any

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from identity_core.config import settings
from identity_core.core.logging import get_logger

logger = get_logger(__name__)

_pool: ArqRedis | None = None
_pool_lock = asyncio.Lock()


async def get_queue() -> ArqRedis:
    global _pool
    async with _pool_lock:
        if _pool is None:
            _pool = await create_pool(RedisSettings.from_dsn(settings.ARQ_REDIS_URL))
            logger.info("arq_pool_created")
    return _pool


async def enqueue_job(
    function_name: str,
    *args: Any,
    _job_id: str | None = None,
    _defer_by: float | None = None,
    **kwargs: Any,
) -> str | None:
    """
    Enqueue a job for the worker.

    Mail jobs carry raw single-use tokens as arguments, so only argument names
    are ever logged.

    Returns:
        The job id, or None when the job was not queued (duplicate id or error)
    """
    arg_names = sorted(kwargs)
    try:
        pool = await get_queue()
        job = await pool.enqueue_job(
            function_name, *args, _job_id=_job_id, _defer_by=_defer_by, **kwargs
        )
    except Exception as e:
        logger.error(
            "job_enqueue_error",
            function=function_name,
            args=arg_names,
            error=str(e),
            error_type=type(e).__name__,
        )
        return None

    if job is None:
        logger.warning("job_not_enqueued", function=function_name, job_id=_job_id)
        return None

    logger.debug("job_enqueued", function=function_name, job_id=job.job_id, args=arg_names)
    return job.job_id


async def close_queue() -> None:
    """Close the pool on shutdown."""
    global _pool
    if _pool is not None:
        await _pool.aclose()
        _pool = None
        logger.info("arq_pool_closed")
