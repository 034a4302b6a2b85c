"""
SQLModel-based Users model.

The identity store owns credentials: the password hash is only ever written by
the password lifecycle flows (register, change, reset), and the active flag by
account-status operations.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from identity_core.core.security import utcnow


class UserBase(SQLModel):
    """Fields safe to expose through the API."""

    email: str = Field(max_length=255)
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)


class Users(UserBase, table=True):
    """
    Database table for user credentials.

    Extends UserBase with:
    - Primary key (UUID string)
    - Password hash and its last-changed timestamp
    - Active / email-verified flags
    - Login metadata
    """

    __tablename__ = "users"

    __table_args__ = (Index("idx_users_email", "email", unique=True),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=36)

    password_hash: str = Field(max_length=255)
    password_changed_at: datetime | None = Field(default=None)

    is_active: bool = Field(default=True)
    email_verified: bool = Field(default=False)
    email_verified_at: datetime | None = Field(default=None)

    last_login_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime | None = Field(default=None)
