"""
SQLModel/SQLAlchemy stores.

Every method opens its own short session from the injected factory. Races on
token rows are settled in the database with conditional UPDATEs: the caller
whose UPDATE matched exactly one row wins.
"""

from datetime import datetime

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import col

from identity_core.core.logging import get_logger
from identity_core.models import (
    AuditLogs,
    EmailVerificationTokens,
    PasswordHistory,
    PasswordResetTokens,
    RefreshTokens,
    Tenants,
    TenantUsers,
    Users,
)
from identity_core.stores.base import AuditEvent

logger = get_logger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


class SqlCredentialStore:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_by_email(self, email: str) -> Users | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Users).where(col(Users.email) == email.strip().lower())
            )
            return result.scalar_one_or_none()

    async def get_by_id(self, user_id: str) -> Users | None:
        async with self._session_factory() as db:
            return await db.get(Users, user_id)

    async def create_account(self, user: Users, tenant: Tenants, membership: TenantUsers) -> Users:
        async with self._session_factory() as db:
            db.add_all([tenant, user, membership])
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise ValueError("email or tenant slug already registered") from e
            return user

    async def update_password(self, user_id: str, password_hash: str, changed_at: datetime) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(Users)
                .where(col(Users.id) == user_id)
                .values(
                    password_hash=password_hash,
                    password_changed_at=changed_at,
                    updated_at=changed_at,
                )
            )
            await db.commit()

    async def update_login_metadata(self, user_id: str, logged_in_at: datetime) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(Users).where(col(Users.id) == user_id).values(last_login_at=logged_in_at)
            )
            await db.commit()

    async def mark_email_verified(self, user_id: str, verified_at: datetime) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(Users)
                .where(col(Users.id) == user_id)
                .values(email_verified=True, email_verified_at=verified_at)
            )
            await db.commit()


class SqlTenantStore:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, tenant_id: str) -> Tenants | None:
        async with self._session_factory() as db:
            return await db.get(Tenants, tenant_id)

    async def get_by_slug(self, slug: str) -> Tenants | None:
        async with self._session_factory() as db:
            result = await db.execute(select(Tenants).where(col(Tenants.slug) == slug))
            return result.scalar_one_or_none()

    async def list_memberships(self, user_id: str) -> list[TenantUsers]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(TenantUsers).where(col(TenantUsers.user_id) == user_id)
            )
            return list(result.scalars().all())


class SqlRefreshTokenStore:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def add(self, token: RefreshTokens) -> None:
        async with self._session_factory() as db:
            db.add(token)
            await db.commit()

    async def get_by_hash(self, token_hash: str) -> RefreshTokens | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(RefreshTokens).where(col(RefreshTokens.token_hash) == token_hash)
            )
            return result.scalar_one_or_none()

    async def replace(self, old_id: str, new_token: RefreshTokens, revoked_at: datetime) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                update(RefreshTokens)
                .where(col(RefreshTokens.id) == old_id, col(RefreshTokens.revoked).is_(False))
                .values(revoked=True, revoked_at=revoked_at)
            )
            if result.rowcount != 1:  # type: ignore[attr-defined]
                await db.rollback()
                return False
            db.add(new_token)
            await db.commit()
            return True

    async def revoke(self, token_id: str, revoked_at: datetime) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                update(RefreshTokens)
                .where(col(RefreshTokens.id) == token_id, col(RefreshTokens.revoked).is_(False))
                .values(revoked=True, revoked_at=revoked_at)
            )
            await db.commit()
            return bool(result.rowcount == 1)  # type: ignore[attr-defined]

    async def revoke_all_for_user(self, user_id: str, revoked_at: datetime) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                update(RefreshTokens)
                .where(
                    col(RefreshTokens.user_id) == user_id,
                    col(RefreshTokens.revoked).is_(False),
                )
                .values(revoked=True, revoked_at=revoked_at)
            )
            await db.commit()
            return int(result.rowcount)  # type: ignore[attr-defined]

    async def revoke_family(self, family_id: str, revoked_at: datetime) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                update(RefreshTokens)
                .where(
                    col(RefreshTokens.family_id) == family_id,
                    col(RefreshTokens.revoked).is_(False),
                )
                .values(revoked=True, revoked_at=revoked_at)
            )
            await db.commit()
            return int(result.rowcount)  # type: ignore[attr-defined]

    async def purge(self, expired_before: datetime, revoked_before: datetime) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                delete(RefreshTokens).where(
                    or_(
                        col(RefreshTokens.expires_at) < expired_before,
                        col(RefreshTokens.revoked_at) < revoked_before,
                    )
                )
            )
            await db.commit()
            return int(result.rowcount)  # type: ignore[attr-defined]


class SqlOneTimeTokenStore:
    """Password reset or email verification tokens, depending on ``model``."""

    def __init__(
        self,
        session_factory: SessionFactory,
        model: type[PasswordResetTokens] | type[EmailVerificationTokens],
    ) -> None:
        self._session_factory = session_factory
        self._model = model

    async def add(self, token: PasswordResetTokens | EmailVerificationTokens) -> None:
        async with self._session_factory() as db:
            db.add(token)
            await db.commit()

    async def get_by_hash(
        self, token_hash: str
    ) -> PasswordResetTokens | EmailVerificationTokens | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(self._model).where(col(self._model.token_hash) == token_hash)
            )
            return result.scalar_one_or_none()

    async def consume(self, token_id: str, used_at: datetime) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                update(self._model)
                .where(col(self._model.id) == token_id, col(self._model.used).is_(False))
                .values(used=True, used_at=used_at)
            )
            await db.commit()
            return bool(result.rowcount == 1)  # type: ignore[attr-defined]

    async def invalidate_for_user(self, user_id: str, used_at: datetime) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                update(self._model)
                .where(col(self._model.user_id) == user_id, col(self._model.used).is_(False))
                .values(used=True, used_at=used_at)
            )
            await db.commit()
            return int(result.rowcount)  # type: ignore[attr-defined]

    async def purge(self, expired_before: datetime) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                delete(self._model).where(col(self._model.expires_at) < expired_before)
            )
            await db.commit()
            return int(result.rowcount)  # type: ignore[attr-defined]


class SqlPasswordHistoryStore:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def append(self, user_id: str, password_hash: str, created_at: datetime) -> None:
        async with self._session_factory() as db:
            db.add(
                PasswordHistory(
                    user_id=user_id, password_hash=password_hash, created_at=created_at
                )
            )
            await db.commit()

    async def recent(self, user_id: str, limit: int) -> list[str]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(PasswordHistory.password_hash)
                .where(col(PasswordHistory.user_id) == user_id)
                .order_by(col(PasswordHistory.created_at).desc(), col(PasswordHistory.id).desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def trim(self, user_id: str, keep: int) -> int:
        async with self._session_factory() as db:
            stale = await db.execute(
                select(PasswordHistory.id)
                .where(col(PasswordHistory.user_id) == user_id)
                .order_by(col(PasswordHistory.created_at).desc(), col(PasswordHistory.id).desc())
                .offset(keep)
            )
            stale_ids = list(stale.scalars().all())
            if not stale_ids:
                return 0
            await db.execute(delete(PasswordHistory).where(col(PasswordHistory.id).in_(stale_ids)))
            await db.commit()
            return len(stale_ids)


class SqlAuditSink:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def append(self, event: AuditEvent) -> None:
        row = AuditLogs(
            action=event.action,
            outcome=event.outcome,
            user_id=event.user_id,
            email=event.email,
            tenant_id=event.tenant_id,
            error_kind=event.error_kind,
            detail=event.detail,
            ip_address=event.ip_address,
            user_agent=(event.user_agent or "")[:255] or None,
        )
        if event.occurred_at is not None:
            row.created_at = event.occurred_at
        async with self._session_factory() as db:
            db.add(row)
            await db.commit()
        logger.info(
            "audit_event",
            action=event.action,
            outcome=event.outcome,
            user_id=event.user_id,
            error_kind=event.error_kind,
        )
