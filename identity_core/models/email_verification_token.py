"""SQLModel-based EmailVerificationTokens model."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import ForeignKeyConstraint, Index
from sqlmodel import Field, SQLModel

from identity_core.core.security import utcnow


class EmailVerificationTokens(SQLModel, table=True):
    __tablename__ = "email_verification_tokens"

    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            ondelete="CASCADE",
            name="fk_email_verification_tokens_user_id",
        ),
        Index("idx_email_verification_tokens_user_id", "user_id"),
        Index("idx_email_verification_tokens_token_hash", "token_hash", unique=True),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=36)
    user_id: str = Field(max_length=36)
    email: str = Field(max_length=255)
    token_hash: str = Field(max_length=64)
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    used: bool = Field(default=False)
    used_at: datetime | None = Field(default=None)
