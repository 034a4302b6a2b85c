"""
Structured logging for the identity service.

Console output in development, one JSON object per line elsewhere. Request
middleware binds ``request_id`` and tenant resolution binds ``tenant_id`` via
structlog's contextvars, so every event emitted while handling a request
carries both without being passed around.

Raw credentials must never reach a log line. Call sites log token row ids,
and ``redact_secrets`` masks the usual secret-bearing keys in case one slips
through.
"""

import logging
import sys
from typing import Any, cast

import structlog
from structlog.types import EventDict, Processor

from identity_core.config import settings

REDACTED = "[redacted]"

SECRET_KEYS = frozenset(
    {
        "password",
        "current_password",
        "new_password",
        "password_hash",
        "token",
        "access_token",
        "refresh_token",
        "secret",
        "authorization",
    }
)


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    for key in SECRET_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def configure_logging(level: str | None = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Safe to call more than once (the API lifespan and the arq worker both call it).
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.ENVIRONMENT == "development":
        renderer: list[Processor] = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        renderer = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=shared_processors + renderer,
        wrapper_class=structlog.make_filtering_bound_logger(logging.NOTSET),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, (level or settings.LOG_LEVEL).upper()),
        force=True,
    )

    # Engine echo would print bound parameters, which include password hashes
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    if settings.ENVIRONMENT != "development":
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a logger instance with the given name.

    Example:
        logger = get_logger(__name__)
        logger.warning("refresh_token_revoked_presented", token_id=token.id)
    """
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))


def set_request_context(request_id: str) -> None:
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)


def set_tenant_context(tenant_id: str) -> None:
    """Attach the resolved tenant to every log line for the rest of the request."""
    structlog.contextvars.bind_contextvars(tenant_id=tenant_id)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def bind_context(**kwargs: Any) -> None:
    """
    Bind context to all subsequent logs in this context (arq jobs use it for the task name).

    Example:
        bind_context(task="purge_expired_tokens")
    """
    structlog.contextvars.bind_contextvars(**kwargs)
