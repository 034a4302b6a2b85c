"""
Authentication dependencies for FastAPI route protection.

This module provides dependency functions for:
- Extracting and verifying bearer access tokens
- Client IP / user agent extraction for audit and refresh token metadata
"""

import ipaddress
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from identity_core.config import settings
from identity_core.services.credential_verifier import RequestMeta
from identity_core.services.token_issuer import AccessTokenClaims

# auto_error=False so a missing header yields our 401 instead of FastAPI's 403
bearer_scheme = HTTPBearer(auto_error=False)


def bearer_token(request: Request) -> str | None:
    """Raw bearer token from the Authorization header, if any."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_claims(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)] = None,
) -> AccessTokenClaims:
    """
    Verify the bearer access token.

    Raises:
        HTTPException: 401 if the token is missing, invalid, or expired
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    claims = request.app.state.services.tokens.verify(credentials.credentials)
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims


def _is_trusted(address: str, trusted: list[str]) -> bool:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    return any(ip in ipaddress.ip_network(entry, strict=False) for entry in trusted)


def get_client_ip(request: Request, trusted_proxies: list[str] | None = None) -> str:
    """
    Extract the origin IP address of the request.

    X-Forwarded-For is only honoured when the direct peer is a configured
    trusted proxy. The header is then walked from the right and the first hop
    that is not itself a trusted proxy is the client; anything to the left of
    it was written by the caller and cannot be trusted.
    """
    peer = request.client.host if request.client else "unknown"
    trusted = settings.TRUSTED_PROXIES if trusted_proxies is None else trusted_proxies
    forwarded = request.headers.get("X-Forwarded-For")
    if not forwarded or not _is_trusted(peer, trusted):
        return peer

    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if not _is_trusted(hop, trusted):
            return hop
    # Every hop is a proxy; the leftmost is the furthest one we can see
    return hops[0] if hops else peer


def get_user_agent(request: Request) -> str:
    return request.headers.get("User-Agent", "unknown")


def get_request_meta(request: Request) -> RequestMeta:
    return RequestMeta(ip_address=get_client_ip(request), user_agent=get_user_agent(request))


# Type aliases for dependency injection
CurrentClaims = Annotated[AccessTokenClaims, Depends(get_current_claims)]
ClientMeta = Annotated[RequestMeta, Depends(get_request_meta)]
