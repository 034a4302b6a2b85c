"""SQLModel-based Tenants model."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from identity_core.core.security import utcnow


class Tenants(SQLModel, table=True):
    """
    An organization scope. ``slug`` is the URL-safe identifier accepted in the
    X-Tenant-Slug header; ``id`` is the GUID accepted in X-Tenant-Id.
    """

    __tablename__ = "tenants"

    __table_args__ = (Index("idx_tenants_slug", "slug", unique=True),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=36)
    name: str = Field(max_length=200)
    slug: str = Field(max_length=64)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)
