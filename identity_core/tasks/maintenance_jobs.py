"""Token cleanup jobs for the arq worker."""

from typing import Any

from arq import Retry

from identity_core.core.logging import bind_context, get_logger

logger = get_logger(__name__)


async def purge_expired_tokens_job(ctx: dict[str, Any]) -> dict[str, int]:
    """
    Delete refresh, reset and verification tokens past their retention period.

    Revoked and used rows stay around for the retention window so they can
    still be inspected after the fact.

    Raises:
        Retry: If the database is unavailable
    """
    bind_context(task="purge_expired_tokens")
    services = ctx["services"]

    try:
        refresh_count = await services.refresh_tokens.purge_expired()
        cutoff = services.refresh_tokens.cutoff()
        reset_count = await services.stores.reset_tokens.purge(expired_before=cutoff)
        verification_count = await services.stores.verification_tokens.purge(
            expired_before=cutoff
        )
    except Exception as e:
        logger.error(
            "token_purge_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise Retry(defer=ctx["job_try"] * 5) from e

    logger.info(
        "token_purge_completed",
        refresh_tokens=refresh_count,
        reset_tokens=reset_count,
        verification_tokens=verification_count,
    )
    return {
        "refresh_tokens": refresh_count,
        "reset_tokens": reset_count,
        "verification_tokens": verification_count,
    }
