"""
SQLModel-based TenantUsers model (tenant membership).

A user may belong to several tenants. Login picks the primary membership
explicitly: the active membership with the earliest ``joined_at``.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import ForeignKeyConstraint, Index
from sqlmodel import Field, SQLModel

from identity_core.config import TenantRole
from identity_core.core.security import utcnow


class TenantUsers(SQLModel, table=True):
    __tablename__ = "tenant_users"

    __table_args__ = (
        ForeignKeyConstraint(
            ["tenant_id"],
            ["tenants.id"],
            ondelete="CASCADE",
            name="fk_tenant_users_tenant_id",
        ),
        ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            ondelete="CASCADE",
            name="fk_tenant_users_user_id",
        ),
        Index("idx_tenant_users_user_id", "user_id"),
        Index("idx_tenant_users_tenant_user", "tenant_id", "user_id", unique=True),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=36)
    tenant_id: str = Field(max_length=36)
    user_id: str = Field(max_length=36)
    role: str = Field(default=TenantRole.SITE_ENGINEER, max_length=32)
    is_active: bool = Field(default=True)
    invited_at: datetime | None = Field(default=None)
    joined_at: datetime | None = Field(default_factory=utcnow)
