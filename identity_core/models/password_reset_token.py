"""SQLModel-based PasswordResetTokens model. Single use, short lived, stored hashed."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import ForeignKeyConstraint, Index
from sqlmodel import Field, SQLModel

from identity_core.core.security import utcnow


class PasswordResetTokens(SQLModel, table=True):
    __tablename__ = "password_reset_tokens"

    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            ondelete="CASCADE",
            name="fk_password_reset_tokens_user_id",
        ),
        Index("idx_password_reset_tokens_user_id", "user_id"),
        Index("idx_password_reset_tokens_token_hash", "token_hash", unique=True),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=36)
    user_id: str = Field(max_length=36)
    token_hash: str = Field(max_length=64)
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    used: bool = Field(default=False)
    used_at: datetime | None = Field(default=None)
    ip_address: str | None = Field(default=None, max_length=45)
