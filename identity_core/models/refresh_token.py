"""
SQLModel-based RefreshToken model.

Security features:
- Stores the SHA-256 hash of the secret (never the plaintext)
- Tracks token family for replay containment
- Revoked rows are kept for audit until purged by age
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import ForeignKeyConstraint, Index
from sqlmodel import Field, SQLModel

from identity_core.core.security import utcnow


class RefreshTokens(SQLModel, table=True):
    """
    Database table for refresh tokens.

    Lifecycle: issued -> validated* -> rotated | revoked | expired. A revoked row
    is never un-revoked.
    """

    __tablename__ = "refresh_tokens"

    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            ondelete="CASCADE",
            name="fk_refresh_tokens_user_id",
        ),
        Index("idx_refresh_tokens_user_id", "user_id"),
        Index("idx_refresh_tokens_token_hash", "token_hash", unique=True),
        Index("idx_refresh_tokens_family_id", "family_id"),
        Index("idx_refresh_tokens_expires_at", "expires_at"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=36)

    user_id: str = Field(max_length=36)

    # Token (hashed - never store plaintext!)
    token_hash: str = Field(max_length=64)

    # All tokens rotated from the same login share a family_id
    family_id: str = Field(default_factory=lambda: str(uuid4()), max_length=36)
    parent_token_id: str | None = Field(default=None, max_length=36)

    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    # Extended lifetime ("remember me"); inherited on rotation
    remember_me: bool = Field(default=False)

    revoked: bool = Field(default=False)
    revoked_at: datetime | None = Field(default=None)

    # Security tracking
    ip_address: str | None = Field(default=None, max_length=45)  # Supports IPv6
    user_agent: str | None = Field(default=None, max_length=255)
