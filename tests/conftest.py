"""
Pytest configuration and shared fixtures.

This file provides common fixtures for all tests. Everything runs in-process:
in-memory stores for services and the API, aiosqlite for the SQL stores.
"""

import os

# Must be set before identity_core.config is imported anywhere
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "development")

from collections.abc import AsyncGenerator  # noqa: E402
from datetime import datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from identity_core.config import Settings, TenantRole, settings  # noqa: E402
from identity_core.core.container import (  # noqa: E402
    IdentityServices,
    build_services,
    memory_stores,
)
from identity_core.core.security import utcnow  # noqa: E402
from identity_core.main import create_app  # noqa: E402
from identity_core.models import Tenants, TenantUsers, Users  # noqa: E402

TEST_PASSWORD = "Correct-Horse-9"
OTHER_PASSWORD = "Battery-Staple-7"


class FakeClock:
    """Controllable clock; starts at the real current time so JWTs stay valid."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingMailSender:
    """MailSender that remembers what would have been queued."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def send_verification(self, email: str, name: str, token: str) -> None:
        self.sent.append(("verification", email, token))

    async def send_reset(self, email: str, name: str, token: str) -> None:
        self.sent.append(("reset", email, token))

    async def send_invitation(
        self, email: str, tenant_name: str, inviter_name: str, token: str
    ) -> None:
        self.sent.append(("invitation", email, token))

    def last_token(self, kind: str) -> str:
        return next(token for sent_kind, _, token in reversed(self.sent) if sent_kind == kind)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mail() -> RecordingMailSender:
    return RecordingMailSender()


@pytest.fixture
def test_settings() -> Settings:
    """Settings with generous rate limits so lockout tests are not throttled first."""
    return settings.model_copy(
        update={
            "LOGIN_RATE_LIMIT": 100,
            "REGISTER_RATE_LIMIT": 100,
            "PASSWORD_RESET_RATE_LIMIT": 100,
        }
    )


@pytest.fixture
def services(
    test_settings: Settings, clock: FakeClock, mail: RecordingMailSender
) -> IdentityServices:
    """In-memory IdentityServices with cheap bcrypt and a fake clock."""
    return build_services(
        test_settings, memory_stores(), mail=mail, clock=clock, bcrypt_rounds=4
    )


@pytest.fixture
async def test_user(services: IdentityServices, clock: FakeClock) -> Users:
    """
    Active, verified user who is TenantAdmin of one tenant.

    Usage:
        async def test_login(test_user, services):
            result = await services.verifier.login(test_user.email, TEST_PASSWORD)
    """
    user = Users(
        email="alice@example.com",
        first_name="Alice",
        last_name="Liddell",
        password_hash=services.passwords.hash(TEST_PASSWORD),
        password_changed_at=clock(),
        email_verified=True,
        created_at=clock(),
    )
    tenant = Tenants(name="Wonderland", slug="wonderland", created_at=clock())
    membership = TenantUsers(
        tenant_id=tenant.id, user_id=user.id, role=TenantRole.TENANT_ADMIN, joined_at=clock()
    )
    await services.stores.credentials.create_account(user, tenant, membership)
    await services.passwords.record_history(user.id, user.password_hash)
    return user


@pytest.fixture
def app(services: IdentityServices) -> FastAPI:
    """
    FastAPI app wired to the in-memory services.

    ASGITransport does not run the lifespan, so the services set here are the
    ones every request sees.
    """
    application = create_app()
    application.state.services = services
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """
    Create async HTTP client for testing API endpoints.

    Usage:
        async def test_endpoint(client):
            response = await client.get("/health")
            assert response.status_code == 200
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
