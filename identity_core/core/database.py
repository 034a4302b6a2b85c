"""
Database configuration and session management
"""

from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from identity_core.config import settings


def build_engine(url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    """Create the async engine; pool sizing only applies to server databases."""
    url = url or settings.DATABASE_URL
    kwargs: dict[str, Any] = {
        "echo": settings.DB_ECHO if echo is None else echo,
        "pool_pre_ping": True,  # Verify connections before using
    }
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=3600,  # Recycle connections every hour
        )
    return create_async_engine(url, **kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Create async engine
engine = build_engine()

# Create async session factory
AsyncSessionLocal = build_session_factory(engine)


async def create_tables(bind: AsyncEngine | None = None) -> None:
    """Create all identity tables (development and tests; no migration tooling)."""
    import identity_core.models  # noqa: F401  (registers tables on SQLModel.metadata)

    async with (bind or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

