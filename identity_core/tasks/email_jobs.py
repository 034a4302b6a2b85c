"""Email background jobs for the arq worker."""

from collections.abc import Awaitable, Callable
from typing import Any

from arq import Retry

from identity_core.core.logging import bind_context, get_logger
from identity_core.services.email import (
    send_invitation_email,
    send_password_reset_email,
    send_verification_email,
)

logger = get_logger(__name__)


async def _deliver(
    ctx: dict[str, Any], kind: str, email: str, send: Callable[[], Awaitable[bool]]
) -> None:
    try:
        success = await send()
    except Exception as e:
        logger.error(
            f"{kind}_email_task_error",
            email=email,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise Retry(defer=ctx["job_try"] * 5) from e

    if not success:
        logger.error(f"{kind}_email_failed", email=email, job_try=ctx["job_try"])
        raise Retry(defer=ctx["job_try"] * 5)

    logger.info(f"{kind}_email_sent", email=email)


async def send_verification_email_job(
    ctx: dict[str, Any], email: str, name: str, token: str
) -> None:
    """
    Send the email verification link.

    Raises:
        Retry: If SMTP delivery fails (retried up to max_tries)
    """
    bind_context(task="send_verification_email")
    await _deliver(
        ctx, "verification", email, lambda: send_verification_email(email, name, token)
    )


async def send_password_reset_email_job(
    ctx: dict[str, Any], email: str, name: str, token: str
) -> None:
    """
    Send the password reset link.

    Raises:
        Retry: If SMTP delivery fails (retried up to max_tries)
    """
    bind_context(task="send_password_reset_email")
    await _deliver(
        ctx, "password_reset", email, lambda: send_password_reset_email(email, name, token)
    )


async def send_invitation_email_job(
    ctx: dict[str, Any], email: str, tenant_name: str, inviter_name: str, token: str
) -> None:
    bind_context(task="send_invitation_email")
    await _deliver(
        ctx,
        "invitation",
        email,
        lambda: send_invitation_email(email, tenant_name, inviter_name, token),
    )
