"""
Stateless access tokens (JWT, HS256 by default).

Verification is a pure function of signature, issuer, audience and expiry;
nothing is looked up, which is why access tokens stay short-lived.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import jwt

from identity_core.config import Settings
from identity_core.core.errors import SigningKeyError
from identity_core.core.logging import get_logger
from identity_core.core.security import Clock, utcnow

logger = get_logger(__name__)

# Claims the issuer owns; extra claims can never override these
RESERVED_CLAIMS = frozenset(
    {"sub", "tenant_id", "tenant_role", "jti", "iat", "exp", "iss", "aud", "type"}
)


@dataclass(frozen=True)
class AccessTokenClaims:
    subject: str
    email: str | None
    tenant_id: str | None
    tenant_role: str | None
    tenant_name: str | None
    tenant_slug: str | None
    token_id: str
    issued_at: datetime
    expires_at: datetime


class TokenIssuer:
    def __init__(
        self,
        secret_key: str | None,
        *,
        algorithm: str = "HS256",
        issuer: str = "identity-core",
        audience: str = "identity-core-clients",
        ttl_minutes: int = 60,
        clock: Clock = utcnow,
    ) -> None:
        if not secret_key:
            raise SigningKeyError("token signing key is not configured")
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.ttl = timedelta(minutes=ttl_minutes)
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utcnow) -> "TokenIssuer":
        return cls(
            settings.SECRET_KEY,
            algorithm=settings.ALGORITHM,
            issuer=settings.JWT_ISSUER,
            audience=settings.JWT_AUDIENCE,
            ttl_minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES,
            clock=clock,
        )

    @property
    def ttl_seconds(self) -> int:
        return int(self.ttl.total_seconds())

    def issue_access_token(
        self,
        subject: str,
        tenant_id: str | None,
        tenant_role: str | None,
        claims_extra: dict[str, Any] | None = None,
    ) -> str:
        """
        Create a signed access token.

        Args:
            subject: User id ("sub")
            tenant_id: Primary tenant for this session
            tenant_role: Role within that tenant
            claims_extra: Additional claims (email, tenant_name, tenant_slug)

        Returns:
            Encoded JWT with a fresh "jti" per call
        """
        now = self._clock()
        payload: dict[str, Any] = {
            key: value
            for key, value in (claims_extra or {}).items()
            if key not in RESERVED_CLAIMS and value is not None
        }
        payload.update(
            {
                "sub": subject,
                "tenant_id": tenant_id,
                "tenant_role": tenant_role,
                "jti": str(uuid4()),
                "iat": now,
                "exp": now + self.ttl,
                "iss": self.issuer,
                "aud": self.audience,
                "type": "access",
            }
        )
        return jwt.encode(payload, self._secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> AccessTokenClaims | None:
        """
        Verify and decode an access token.

        Returns:
            Claims if signature, issuer, audience and expiry all check out, None otherwise
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["sub", "exp", "jti", "iss", "aud"]},
            )
        except jwt.ExpiredSignatureError:
            logger.debug("access_token_expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.debug("access_token_invalid", error_type=type(e).__name__)
            return None

        if payload.get("type") != "access":
            return None

        return AccessTokenClaims(
            subject=str(payload["sub"]),
            email=payload.get("email"),
            tenant_id=payload.get("tenant_id"),
            tenant_role=payload.get("tenant_role"),
            tenant_name=payload.get("tenant_name"),
            tenant_slug=payload.get("tenant_slug"),
            token_id=payload["jti"],
            issued_at=datetime.fromtimestamp(payload.get("iat", 0), tz=UTC),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=UTC),
        )
