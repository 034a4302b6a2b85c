"""
SQLModel-based AuditLogs model.

One row per security-relevant outcome. ``error_kind`` keeps the precise failure
reason that clients never see.
"""

from datetime import datetime

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from identity_core.core.security import utcnow


class AuditLogs(SQLModel, table=True):
    __tablename__ = "audit_logs"

    __table_args__ = (
        Index("idx_audit_logs_user_id", "user_id"),
        Index("idx_audit_logs_action_created", "action", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    action: str = Field(max_length=50)
    outcome: str = Field(max_length=16)
    user_id: str | None = Field(default=None, max_length=36)
    email: str | None = Field(default=None, max_length=255)
    tenant_id: str | None = Field(default=None, max_length=36)
    error_kind: str | None = Field(default=None, max_length=50)
    detail: str | None = Field(default=None, max_length=500)
    ip_address: str | None = Field(default=None, max_length=45)
    user_agent: str | None = Field(default=None, max_length=255)
    created_at: datetime = Field(default_factory=utcnow)
