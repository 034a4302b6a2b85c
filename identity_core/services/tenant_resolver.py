"""
Tenant resolution for a request.

Pure selection over already-parsed request data, in strict precedence:
token claim, then X-Tenant-Id / X-Tenant-Slug header, then the tenant_id query
parameter (system-scoped routes only). No database lookup happens here;
existence and authorization are checked by whoever consumes the context.
"""

import re
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum

from identity_core.core.errors import ErrorKind, Result

TENANT_ID_HEADER = "x-tenant-id"
TENANT_SLUG_HEADER = "x-tenant-slug"
TENANT_QUERY_PARAM = "tenant_id"

_SLUG_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,62}[a-z0-9])?$")


class TenantSource(StrEnum):
    CLAIM = "claim"
    HEADER = "header"
    QUERY = "query"


@dataclass(frozen=True)
class TenantContext:
    source: TenantSource
    tenant_id: str | None = None
    tenant_slug: str | None = None

    @property
    def identifier(self) -> str:
        return self.tenant_id or self.tenant_slug or ""


def parse_tenant_id(value: str | None) -> str | None:
    """Canonical lowercase GUID string, or None when ``value`` is not a GUID."""
    if not value:
        return None
    try:
        return str(uuid.UUID(value.strip()))
    except ValueError:
        return None


def parse_tenant_slug(value: str | None) -> str | None:
    if not value:
        return None
    slug = value.strip().lower()
    return slug if _SLUG_RE.match(slug) else None


def resolve_tenant(
    claims: Mapping[str, object] | None,
    headers: Mapping[str, str],
    query: Mapping[str, str],
    *,
    allow_query: bool = True,
) -> Result[TenantContext]:
    """
    Pick the tenant for a request.

    Args:
        claims: Verified access token claims, or None for anonymous requests
        headers: Request headers (any key case)
        query: Query parameters
        allow_query: Whether this route may take the tenant from the query string

    Returns:
        TenantContext with its source, or TenantUnresolved
    """
    if claims:
        claimed = parse_tenant_id(str(claims.get("tenant_id") or ""))
        if claimed:
            return Result.success(TenantContext(TenantSource.CLAIM, tenant_id=claimed))

    lowered = {key.lower(): value for key, value in headers.items()}

    header_id = parse_tenant_id(lowered.get(TENANT_ID_HEADER))
    if header_id:
        return Result.success(TenantContext(TenantSource.HEADER, tenant_id=header_id))

    header_slug = parse_tenant_slug(lowered.get(TENANT_SLUG_HEADER))
    if header_slug:
        return Result.success(TenantContext(TenantSource.HEADER, tenant_slug=header_slug))

    if allow_query:
        query_id = parse_tenant_id(query.get(TENANT_QUERY_PARAM))
        if query_id:
            return Result.success(TenantContext(TenantSource.QUERY, tenant_id=query_id))

    return Result.fail(ErrorKind.TENANT_UNRESOLVED)
