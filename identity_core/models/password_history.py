"""SQLModel-based PasswordHistory model. Append-only; trimmed to the retention count."""

from datetime import datetime

from sqlalchemy import ForeignKeyConstraint, Index
from sqlmodel import Field, SQLModel

from identity_core.core.security import utcnow


class PasswordHistory(SQLModel, table=True):
    __tablename__ = "password_history"

    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            ondelete="CASCADE",
            name="fk_password_history_user_id",
        ),
        Index("idx_password_history_user_created", "user_id", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(max_length=36)
    password_hash: str = Field(max_length=255)
    created_at: datetime = Field(default_factory=utcnow)
