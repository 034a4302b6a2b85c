"""
Request middleware.

Registered outermost first: request context, rate limiting, tenant resolution.
Each reads the shared IdentityServices from ``request.app.state.services``.
"""

import time
from dataclasses import asdict
from uuid import uuid4

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from identity_core.core.auth import bearer_token, get_client_ip
from identity_core.core.logging import (
    clear_request_context,
    get_logger,
    set_request_context,
    set_tenant_context,
)
from identity_core.services.rate_limit import client_identity
from identity_core.services.tenant_resolver import resolve_tenant

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Routes that never need a tenant
PUBLIC_PREFIXES = (
    "/api/v1/auth",
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/.well-known",
)
SYSTEM_ADMIN_PREFIXES = ("/api/sys",)
# System-scoped routes may name the tenant in the query string
QUERY_TENANT_PREFIXES = ("/api/v1/admin",)


def _matches(path: str, prefixes: tuple[str, ...]) -> bool:
    return any(path == prefix or path.startswith(prefix + "/") for prefix in prefixes)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id to every log line emitted while handling the request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        set_request_context(request_id=request_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.debug(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window throttling of sensitive routes.

    Callers with a valid access token are counted by user id, everyone else by
    client IP. Rejected requests never reach the route.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        services = request.app.state.services
        if not services.rate_limit_enabled:
            return await call_next(request)

        limit = services.rate_limiter.limit_for_path(request.url.path)
        if limit is None:
            return await call_next(request)

        token = bearer_token(request)
        claims = services.tokens.verify(token) if token else None
        identity = client_identity(claims.subject if claims else None, get_client_ip(request))

        checked = await services.rate_limiter.check(identity, limit)
        if checked.error is not None:
            retry_after = checked.error.retry_after or int(limit.window.total_seconds())
            code, message = checked.error.public()
            return JSONResponse(
                status_code=code,
                content={"detail": message},
                headers={"Retry-After": str(retry_after)},
            )
        return await call_next(request)


class TenantResolutionMiddleware(BaseHTTPMiddleware):
    """
    Attach the resolved TenantContext to ``request.state.tenant``.

    Public and system-admin routes pass through untouched. Only the lookup key
    is resolved here; whether the tenant exists is the route's concern.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if path == "/" or _matches(path, PUBLIC_PREFIXES + SYSTEM_ADMIN_PREFIXES):
            return await call_next(request)

        services = request.app.state.services
        token = bearer_token(request)
        claims = services.tokens.verify(token) if token else None

        resolved = resolve_tenant(
            asdict(claims) if claims else None,
            request.headers,
            request.query_params,
            allow_query=_matches(path, QUERY_TENANT_PREFIXES),
        )
        if resolved.error is not None:
            logger.info("tenant_not_resolved", path=path)
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={
                    "detail": "Tenant could not be resolved",
                    "code": "TENANT_NOT_RESOLVED",
                },
            )

        tenant = resolved.unwrap()
        request.state.tenant = tenant
        set_tenant_context(tenant.identifier)
        return await call_next(request)
