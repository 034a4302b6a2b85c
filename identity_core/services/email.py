"""Email delivery over SMTP and the identity message templates."""

import asyncio
import html as html_escape
from email.message import EmailMessage
from urllib.parse import quote

import aiosmtplib
from aiosmtplib.errors import (
    SMTPAuthenticationError,
    SMTPConnectError,
    SMTPConnectTimeoutError,
    SMTPException,
    SMTPReadTimeoutError,
)

from identity_core.config import settings
from identity_core.core.logging import get_logger

logger = get_logger(__name__)

_STYLE = """
    <style>
        body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
        .container { max-width: 600px; margin: 0 auto; padding: 20px; }
        .button {
            display: inline-block;
            padding: 12px 24px;
            background-color: #1f6feb;
            color: white;
            text-decoration: none;
            border-radius: 4px;
        }
    </style>
"""


def _html_page(heading: str, paragraphs: list[str], url: str, button: str, footnote: str) -> str:
    body = "\n".join(f"        <p>{p}</p>" for p in paragraphs)
    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">{_STYLE}</head>
<body>
    <div class="container">
        <h2>{heading}</h2>
{body}
        <p><a href="{url}" class="button">{button}</a></p>
        <p>Or copy this link into your browser:</p>
        <p><code>{url}</code></p>
        <p><small>{footnote}</small></p>
    </div>
</body>
</html>
"""


SEND_ATTEMPTS = 3

# Nothing reached the server, so another attempt cannot produce a duplicate
_RETRYABLE = (SMTPConnectError, SMTPConnectTimeoutError)


def build_message(to: str | list[str], subject: str, body: str, html: str | None) -> EmailMessage:
    message = EmailMessage()
    message["From"] = f"{settings.SMTP_FROM_NAME} <{settings.SMTP_FROM_EMAIL}>"
    message["To"] = to if isinstance(to, str) else ", ".join(to)
    message["Subject"] = subject
    message.set_content(body)
    if html:
        message.add_alternative(html, subtype="html")
    return message


async def send_email(
    to: str | list[str],
    subject: str,
    body: str,
    html: str | None = None,
) -> bool:
    """
    Deliver one message over SMTP.

    Connection failures are retried with exponential backoff. A read timeout
    after DATA is not: the server may already have queued the message, and a
    second copy of a reset link is worse than a missing one. Authentication
    and other SMTP errors are permanent for this attempt.

    Returns:
        True if the server accepted the message. Never raises for SMTP errors;
        the calling arq job decides whether to retry later.
    """
    message = build_message(to, subject, body, html)

    for attempt in range(1, SEND_ATTEMPTS + 1):
        try:
            await aiosmtplib.send(
                message,
                hostname=settings.SMTP_HOST,
                port=settings.SMTP_PORT,
                username=settings.SMTP_USER or None,
                password=settings.SMTP_PASSWORD or None,
                use_tls=settings.SMTP_TLS,
                start_tls=settings.SMTP_STARTTLS,
                timeout=30,
            )
        except _RETRYABLE as e:
            logger.warning(
                "email_connection_failed",
                to=to,
                attempt=attempt,
                error_type=type(e).__name__,
            )
            if attempt < SEND_ATTEMPTS:
                await asyncio.sleep(2 ** (attempt - 1))
            continue
        except (SMTPReadTimeoutError, SMTPAuthenticationError) as e:
            logger.error("email_send_aborted", to=to, subject=subject, error_type=type(e).__name__)
            return False
        except SMTPException as e:
            logger.error(
                "email_smtp_error",
                to=to,
                subject=subject,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        logger.info("email_sent", to=to, subject=subject, attempt=attempt)
        return True

    logger.error("email_connection_failed_all_attempts", to=to, subject=subject)
    return False


async def send_verification_email(email: str, name: str, token: str) -> bool:
    """
    Send the email verification link.

    Args:
        email: Recipient address
        name: Display name for the greeting
        token: Raw verification token (not hashed); never logged
    """
    verification_url = f"{settings.FRONTEND_URL}/verify-email?token={quote(token)}"
    safe_name = html_escape.escape(name or email)

    subject = "Verify your email address"
    body = f"""Welcome, {name or email}!

Please verify your email address by opening the link below:

{verification_url}

This link will expire in {settings.EMAIL_VERIFICATION_EXPIRE_HOURS} hours.

If you didn't create an account, you can safely ignore this email.
"""
    html = _html_page(
        f"Welcome, {safe_name}!",
        ["Please verify your email address to activate your account."],
        verification_url,
        "Verify Email Address",
        f"This link will expire in {settings.EMAIL_VERIFICATION_EXPIRE_HOURS} hours.",
    )
    return await send_email(to=email, subject=subject, body=body, html=html)


async def send_password_reset_email(email: str, name: str, token: str) -> bool:
    """
    Send the password reset link. The link carries only the single-use token.
    """
    reset_url = f"{settings.FRONTEND_URL}/reset-password?token={quote(token)}"
    safe_name = html_escape.escape(name or email)

    subject = "Reset your password"
    body = f"""Hi {name or email},

We received a request to reset your password. Open the link below:

{reset_url}

This link will expire in 1 hour and can be used once.

If you didn't request this, you can safely ignore this email. Your password will not change.
"""
    html = _html_page(
        "Reset Your Password",
        [f"Hi {safe_name},", "We received a request to reset your password."],
        reset_url,
        "Reset Password",
        "This link will expire in 1 hour and can be used once.",
    )
    return await send_email(to=email, subject=subject, body=body, html=html)


async def send_invitation_email(
    email: str, tenant_name: str, inviter_name: str, token: str
) -> bool:
    """Invite someone to join a tenant."""
    invite_url = f"{settings.FRONTEND_URL}/accept-invitation?token={quote(token)}"
    safe_tenant = html_escape.escape(tenant_name)
    safe_inviter = html_escape.escape(inviter_name)

    subject = f"You're invited to join {tenant_name}"
    body = f"""Hi,

{inviter_name} has invited you to join {tenant_name}.

Accept the invitation here:

{invite_url}

If you weren't expecting this invitation, you can ignore this email.
"""
    html = _html_page(
        f"Join {safe_tenant}",
        [f"<strong>{safe_inviter}</strong> has invited you to join {safe_tenant}."],
        invite_url,
        "Accept Invitation",
        "If you weren't expecting this invitation, you can ignore this email.",
    )
    return await send_email(to=email, subject=subject, body=body, html=html)
