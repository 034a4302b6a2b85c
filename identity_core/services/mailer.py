"""
MailSender that hands messages to the arq worker.

Enqueueing never raises into the caller and never waits for SMTP, so it is
safe to call right after a token row has been committed.
"""

from identity_core.core.logging import get_logger
from identity_core.tasks.queue import enqueue_job

logger = get_logger(__name__)


class QueuedMailSender:
    async def send_verification(self, email: str, name: str, token: str) -> None:
        job_id = await enqueue_job(
            "send_verification_email_job", email=email, name=name, token=token
        )
        if job_id is None:
            logger.warning("verification_email_not_queued", email=email)

    async def send_reset(self, email: str, name: str, token: str) -> None:
        job_id = await enqueue_job(
            "send_password_reset_email_job", email=email, name=name, token=token
        )
        if job_id is None:
            logger.warning("password_reset_email_not_queued", email=email)

    async def send_invitation(
        self, email: str, tenant_name: str, inviter_name: str, token: str
    ) -> None:
        job_id = await enqueue_job(
            "send_invitation_email_job",
            email=email,
            tenant_name=tenant_name,
            inviter_name=inviter_name,
            token=token,
        )
        if job_id is None:
            logger.warning("invitation_email_not_queued", email=email)
