"""
Tests for the credential verifier flows.

These tests cover:
- Login, including lockout and primary tenant selection
- Refresh, logout and logout-all
- Password change, forgot password and reset
- Registration and email verification
- The audit trail each flow leaves behind
"""

import asyncio
from datetime import timedelta

import pytest

from identity_core.config import AuditAction, AuditOutcome, TenantRole
from identity_core.core.errors import TOKEN_FAILURES, ErrorKind
from identity_core.models import Tenants, TenantUsers, Users
from identity_core.services.credential_verifier import (
    RequestMeta,
    select_primary_membership,
    slugify,
)

PASSWORD = "Correct-Horse-9"
NEW_PASSWORD = "Battery-Staple-7"
META = RequestMeta(ip_address="203.0.113.7", user_agent="pytest")


def audit_actions(services) -> list[str]:
    return [event.action for event in services.stores.audit.events]


@pytest.mark.unit
class TestLogin:
    async def test_success_issues_tokens(self, services, test_user):
        result = await services.verifier.login(test_user.email, PASSWORD, meta=META)

        assert result.ok
        tokens = result.unwrap()
        assert tokens.refresh_token
        assert tokens.tenant_role == TenantRole.TENANT_ADMIN
        assert tokens.tenant_name == "Wonderland"
        assert tokens.expires_in == services.tokens.ttl_seconds

        claims = services.tokens.verify(tokens.access_token)
        assert claims.subject == test_user.id
        assert claims.email == test_user.email
        assert claims.tenant_id == tokens.tenant_id
        assert claims.tenant_slug == "wonderland"

    async def test_success_updates_metadata_and_audits(self, services, test_user, clock):
        await services.verifier.login(test_user.email, PASSWORD, meta=META)

        assert test_user.last_login_at == clock()
        event = services.stores.audit.events[-1]
        assert event.action == AuditAction.LOGGED_IN
        assert event.outcome == AuditOutcome.SUCCESS
        assert event.ip_address == "203.0.113.7"

    async def test_email_is_case_insensitive(self, services, test_user):
        result = await services.verifier.login("  ALICE@example.com ", PASSWORD)
        assert result.ok

    async def test_without_refresh_token(self, services, test_user):
        result = await services.verifier.login(test_user.email, PASSWORD, issue_refresh=False)
        assert result.unwrap().refresh_token is None

    async def test_wrong_password(self, services, test_user):
        result = await services.verifier.login(test_user.email, "Wrong-Horse-99")

        assert result.error.kind == ErrorKind.INVALID_CREDENTIALS
        assert (await services.attempts.status(test_user.email)).failure_count == 1
        assert services.stores.audit.events[-1].error_kind == ErrorKind.INVALID_CREDENTIALS

    async def test_unknown_email_looks_like_wrong_password(self, services, test_user):
        unknown = await services.verifier.login("nobody@example.com", PASSWORD)
        wrong = await services.verifier.login(test_user.email, "Wrong-Horse-99")

        assert unknown.error.kind == wrong.error.kind
        assert unknown.error.public() == wrong.error.public()
        # Enumeration attempts are counted against the submitted email
        assert (await services.attempts.status("nobody@example.com")).failure_count == 1

    async def test_inactive_account(self, services, test_user):
        test_user.is_active = False
        result = await services.verifier.login(test_user.email, PASSWORD)
        assert result.error.kind == ErrorKind.ACCOUNT_INACTIVE

    async def test_no_active_membership(self, services, test_user):
        for membership in await services.stores.tenants.list_memberships(test_user.id):
            membership.is_active = False
        result = await services.verifier.login(test_user.email, PASSWORD)
        assert result.error.kind == ErrorKind.ACCOUNT_INACTIVE

    async def test_lockout_blocks_correct_password(self, services, test_user):
        for _ in range(5):
            await services.verifier.login(test_user.email, "Wrong-Horse-99")

        result = await services.verifier.login(test_user.email, PASSWORD)

        assert result.error.kind == ErrorKind.ACCOUNT_LOCKED
        assert result.error.retry_after == 30 * 60

    async def test_lockout_expires(self, services, test_user, clock):
        for _ in range(5):
            await services.verifier.login(test_user.email, "Wrong-Horse-99")
        clock.advance(minutes=31)

        assert (await services.verifier.login(test_user.email, PASSWORD)).ok
        assert (await services.attempts.status(test_user.email)).failure_count == 0

    async def test_success_clears_failures(self, services, test_user):
        for _ in range(4):
            await services.verifier.login(test_user.email, "Wrong-Horse-99")
        assert (await services.verifier.login(test_user.email, PASSWORD)).ok
        for _ in range(4):
            await services.verifier.login(test_user.email, "Wrong-Horse-99")
        assert (await services.verifier.login(test_user.email, PASSWORD)).ok

    async def test_primary_tenant_is_earliest_joined(self, services, test_user, clock):
        older = Tenants(name="Looking Glass", slug="looking-glass")
        services.stores.tenants.add(
            older,
            TenantUsers(
                tenant_id=older.id,
                user_id=test_user.id,
                role=TenantRole.QAQC,
                joined_at=clock() - timedelta(days=365),
            ),
        )

        tokens = (await services.verifier.login(test_user.email, PASSWORD)).unwrap()

        assert tokens.tenant_id == older.id
        assert tokens.tenant_role == TenantRole.QAQC


@pytest.mark.unit
class TestPrimaryMembership:
    def test_orders_by_joined_then_tenant_id(self, clock):
        same_time = clock()
        memberships = [
            TenantUsers(tenant_id="b", user_id="u", joined_at=same_time),
            TenantUsers(tenant_id="a", user_id="u", joined_at=same_time),
            TenantUsers(tenant_id="c", user_id="u", joined_at=same_time - timedelta(days=1)),
            TenantUsers(tenant_id="d", user_id="u", joined_at=None),
            TenantUsers(tenant_id="e", user_id="u", joined_at=same_time, is_active=False),
        ]
        ordered = [m.tenant_id for m in select_primary_membership(memberships)]
        assert ordered == ["c", "a", "b", "d"]

    def test_slugify(self):
        assert slugify("  Acme Corp, Ltd. ") == "acme-corp-ltd"
        assert slugify("!!!") == ""


@pytest.mark.unit
class TestRefreshAndLogout:
    async def test_refresh_rotates(self, services, test_user):
        first = (await services.verifier.login(test_user.email, PASSWORD)).unwrap()

        result = await services.verifier.refresh(first.refresh_token, meta=META)

        assert result.ok
        second = result.unwrap()
        assert second.refresh_token != first.refresh_token
        assert services.tokens.verify(second.access_token).subject == test_user.id
        assert audit_actions(services)[-1] == AuditAction.TOKEN_REFRESHED

    async def test_old_refresh_token_rejected_after_rotation(self, services, test_user):
        first = (await services.verifier.login(test_user.email, PASSWORD)).unwrap()
        second = (await services.verifier.refresh(first.refresh_token)).unwrap()

        for _ in range(3):
            replay = await services.verifier.refresh(first.refresh_token)
            assert replay.error.kind in TOKEN_FAILURES
        # Replay containment took the live descendant down too
        assert (await services.verifier.refresh(second.refresh_token)).error is not None

    async def test_refresh_unknown_token(self, services):
        result = await services.verifier.refresh("garbage")
        assert result.error.kind == ErrorKind.TOKEN_NOT_FOUND
        assert services.stores.audit.events[-1].action == AuditAction.TOKEN_REFRESH_FAILED

    async def test_refresh_for_deactivated_user(self, services, test_user):
        tokens = (await services.verifier.login(test_user.email, PASSWORD)).unwrap()
        test_user.is_active = False

        result = await services.verifier.refresh(tokens.refresh_token)

        assert result.error.kind == ErrorKind.ACCOUNT_INACTIVE

    async def test_logout_revokes_one_session(self, services, test_user):
        a = (await services.verifier.login(test_user.email, PASSWORD)).unwrap()
        b = (await services.verifier.login(test_user.email, PASSWORD)).unwrap()

        assert (await services.verifier.logout(a.refresh_token)).ok

        assert (await services.verifier.refresh(a.refresh_token)).error is not None
        assert (await services.verifier.refresh(b.refresh_token)).ok

    async def test_logout_unknown_token_is_ok(self, services):
        assert (await services.verifier.logout("garbage")).ok

    async def test_logout_all(self, services, test_user):
        sessions = [
            (await services.verifier.login(test_user.email, PASSWORD)).unwrap() for _ in range(3)
        ]

        result = await services.verifier.logout_all(test_user.id)

        assert result.unwrap() == 3
        for tokens in sessions:
            assert (await services.verifier.refresh(tokens.refresh_token)).error is not None


@pytest.mark.unit
class TestChangePassword:
    async def test_success_revokes_sessions(self, services, test_user):
        tokens = (await services.verifier.login(test_user.email, PASSWORD)).unwrap()

        result = await services.verifier.change_password(test_user.id, PASSWORD, NEW_PASSWORD)

        assert result.ok
        assert (await services.verifier.refresh(tokens.refresh_token)).error is not None
        assert (await services.verifier.login(test_user.email, PASSWORD)).error is not None
        assert (await services.verifier.login(test_user.email, NEW_PASSWORD)).ok
        assert AuditAction.PASSWORD_CHANGED in audit_actions(services)

    async def test_wrong_current_password(self, services, test_user):
        result = await services.verifier.change_password(
            test_user.id, "Wrong-Horse-99", NEW_PASSWORD
        )
        assert result.error.kind == ErrorKind.INVALID_CREDENTIALS

    async def test_weak_new_password(self, services, test_user):
        result = await services.verifier.change_password(test_user.id, PASSWORD, "weakpassword")
        assert result.error.kind == ErrorKind.PASSWORD_POLICY_VIOLATION

    async def test_same_as_current_rejected(self, services, test_user):
        result = await services.verifier.change_password(test_user.id, PASSWORD, PASSWORD)
        assert result.error.kind == ErrorKind.PASSWORD_REUSED

    async def test_unknown_user(self, services):
        result = await services.verifier.change_password("missing", PASSWORD, NEW_PASSWORD)
        assert result.error.kind == ErrorKind.ACCOUNT_INACTIVE

    async def test_history_window(self, services, test_user, clock):
        """The last five passwords are blocked; the sixth-oldest is allowed again."""
        generations = [PASSWORD] + [f"Generation-{i}-Pass" for i in range(1, 6)]
        for previous, following in zip(generations, generations[1:], strict=False):
            clock.advance(seconds=1)
            result = await services.verifier.change_password(test_user.id, previous, following)
            assert result.ok, result.error

        current = generations[-1]
        for recent in generations[1:]:
            result = await services.verifier.change_password(test_user.id, current, recent)
            assert result.error.kind == ErrorKind.PASSWORD_REUSED

        clock.advance(seconds=1)
        assert (await services.verifier.change_password(test_user.id, current, PASSWORD)).ok


@pytest.mark.unit
class TestPasswordReset:
    async def test_unknown_email_succeeds_silently(self, services, mail):
        result = await services.verifier.forgot_password("nobody@example.com")
        assert result.ok
        assert mail.sent == []

    async def test_unverified_account_gets_no_token(self, services, test_user, mail):
        test_user.email_verified = False
        assert (await services.verifier.forgot_password(test_user.email)).ok
        assert mail.sent == []

    async def test_reset_flow(self, services, test_user, mail):
        session = (await services.verifier.login(test_user.email, PASSWORD)).unwrap()
        await services.verifier.forgot_password(test_user.email, meta=META)
        token = mail.last_token("reset")

        result = await services.verifier.reset_password(token, NEW_PASSWORD, meta=META)

        assert result.ok
        assert (await services.verifier.login(test_user.email, NEW_PASSWORD)).ok
        assert (await services.verifier.refresh(session.refresh_token)).error is not None
        assert AuditAction.PASSWORD_RESET in audit_actions(services)

    async def test_token_is_single_use(self, services, test_user, mail):
        await services.verifier.forgot_password(test_user.email)
        token = mail.last_token("reset")
        assert (await services.verifier.reset_password(token, NEW_PASSWORD)).ok

        again = await services.verifier.reset_password(token, "Another-Secret-8")

        assert again.error.kind in TOKEN_FAILURES

    async def test_reused_and_expired_look_the_same(self, services, test_user, mail, clock):
        await services.verifier.forgot_password(test_user.email)
        used = mail.last_token("reset")
        await services.verifier.reset_password(used, NEW_PASSWORD)
        reused = await services.verifier.reset_password(used, "Another-Secret-8")

        await services.verifier.forgot_password(test_user.email)
        stale = mail.last_token("reset")
        clock.advance(minutes=61)
        expired = await services.verifier.reset_password(stale, "Another-Secret-8")

        assert expired.error.kind == ErrorKind.TOKEN_EXPIRED
        assert reused.error.public() == expired.error.public()

    async def test_new_request_invalidates_previous_token(self, services, test_user, mail):
        await services.verifier.forgot_password(test_user.email)
        first = mail.last_token("reset")
        await services.verifier.forgot_password(test_user.email)
        second = mail.last_token("reset")

        assert (await services.verifier.reset_password(first, NEW_PASSWORD)).error is not None
        assert (await services.verifier.reset_password(second, NEW_PASSWORD)).ok

    async def test_rejected_password_keeps_token_usable(self, services, test_user, mail):
        await services.verifier.forgot_password(test_user.email)
        token = mail.last_token("reset")

        weak = await services.verifier.reset_password(token, "weak")
        reused = await services.verifier.reset_password(token, PASSWORD)

        assert weak.error.kind == ErrorKind.PASSWORD_POLICY_VIOLATION
        assert reused.error.kind == ErrorKind.PASSWORD_REUSED
        assert (await services.verifier.reset_password(token, NEW_PASSWORD)).ok

    async def test_reset_clears_lockout(self, services, test_user, mail):
        for _ in range(5):
            await services.verifier.login(test_user.email, "Wrong-Horse-99")
        await services.verifier.forgot_password(test_user.email)

        await services.verifier.reset_password(mail.last_token("reset"), NEW_PASSWORD)

        assert (await services.verifier.login(test_user.email, NEW_PASSWORD)).ok

    async def test_concurrent_redemption_has_one_winner(self, services, test_user, mail):
        await services.verifier.forgot_password(test_user.email)
        token = mail.last_token("reset")

        results = await asyncio.gather(
            services.verifier.reset_password(token, NEW_PASSWORD),
            services.verifier.reset_password(token, "Another-Secret-8"),
        )

        assert sum(1 for r in results if r.ok) == 1


@pytest.mark.unit
class TestRegistration:
    async def test_register_creates_account(self, services, mail):
        result = await services.verifier.register(
            "Bob@Example.com", PASSWORD, "Bob", "Builder", "Bob's Builders", meta=META
        )

        account = result.unwrap()
        assert account.user.email == "bob@example.com"
        assert account.user.email_verified is False
        assert account.tenant.slug == "bob-s-builders"
        memberships = await services.stores.tenants.list_memberships(account.user.id)
        assert [m.role for m in memberships] == [TenantRole.TENANT_ADMIN]
        assert mail.sent[-1][0] == "verification"
        assert await services.passwords.recent_history(account.user.id) == [
            account.user.password_hash
        ]

    async def test_registered_user_can_log_in(self, services):
        await services.verifier.register("bob@example.com", PASSWORD, "Bob", "B", "Builders")
        tokens = (await services.verifier.login("bob@example.com", PASSWORD)).unwrap()
        assert tokens.tenant_name == "Builders"

    async def test_duplicate_email(self, services, test_user):
        result = await services.verifier.register(test_user.email, PASSWORD, "A", "B", "Other Org")
        assert result.error.kind == ErrorKind.VALIDATION_ERROR
        assert audit_actions(services)[-1] == AuditAction.REGISTRATION_FAILED

    async def test_duplicate_organization(self, services, test_user):
        result = await services.verifier.register(
            "new@example.com", PASSWORD, "A", "B", "Wonderland"
        )
        assert result.error.kind == ErrorKind.VALIDATION_ERROR

    async def test_unusable_organization_name(self, services):
        result = await services.verifier.register("new@example.com", PASSWORD, "A", "B", "!!!")
        assert result.error.kind == ErrorKind.VALIDATION_ERROR

    async def test_weak_password(self, services):
        result = await services.verifier.register("new@example.com", "weak", "A", "B", "Org")
        assert result.error.kind == ErrorKind.PASSWORD_POLICY_VIOLATION


@pytest.mark.unit
class TestEmailVerification:
    async def test_verify_email(self, services, mail):
        account = (
            await services.verifier.register("bob@example.com", PASSWORD, "Bob", "B", "Builders")
        ).unwrap()

        result = await services.verifier.verify_email(mail.last_token("verification"))

        assert result.ok
        assert account.user.email_verified is True
        assert account.user.email_verified_at is not None

    async def test_token_is_single_use(self, services, mail):
        await services.verifier.register("bob@example.com", PASSWORD, "Bob", "B", "Builders")
        token = mail.last_token("verification")
        await services.verifier.verify_email(token)

        again = await services.verifier.verify_email(token)

        assert again.error.kind in TOKEN_FAILURES

    async def test_expired_token(self, services, mail, clock):
        await services.verifier.register("bob@example.com", PASSWORD, "Bob", "B", "Builders")
        clock.advance(hours=25)
        result = await services.verifier.verify_email(mail.last_token("verification"))
        assert result.error.kind == ErrorKind.TOKEN_EXPIRED

    async def test_resend_replaces_token(self, services, mail):
        account = (
            await services.verifier.register("bob@example.com", PASSWORD, "Bob", "B", "Builders")
        ).unwrap()
        first = mail.last_token("verification")

        assert (await services.verifier.resend_verification(account.user.id)).ok
        second = mail.last_token("verification")

        assert (await services.verifier.verify_email(first)).error is not None
        assert (await services.verifier.verify_email(second)).ok

    async def test_resend_when_already_verified(self, services, test_user):
        result = await services.verifier.resend_verification(test_user.id)
        assert result.error.kind == ErrorKind.VALIDATION_ERROR
        assert audit_actions(services)[-1] == AuditAction.VERIFICATION_RESEND_FAILED


@pytest.mark.unit
class TestAuditTrail:
    async def test_one_event_per_outcome(self, services, test_user):
        await services.verifier.login(test_user.email, PASSWORD)
        await services.verifier.login(test_user.email, "Wrong-Horse-99")
        await services.verifier.forgot_password("nobody@example.com")
        await services.verifier.logout("garbage")

        assert audit_actions(services) == [
            AuditAction.LOGGED_IN,
            AuditAction.LOGIN_FAILED,
            AuditAction.PASSWORD_RESET_REQUESTED,
            AuditAction.LOGGED_OUT,
        ]

    async def test_secrets_never_reach_audit(self, services, test_user, mail):
        tokens = (await services.verifier.login(test_user.email, PASSWORD)).unwrap()
        await services.verifier.refresh(tokens.refresh_token)
        await services.verifier.forgot_password(test_user.email)

        dumped = repr(services.stores.audit.events)
        assert PASSWORD not in dumped
        assert tokens.refresh_token not in dumped
        assert mail.last_token("reset") not in dumped


@pytest.mark.unit
async def test_end_to_end_scenario(services, mail):
    """register -> login -> change password -> old refresh dead -> relogin -> lockout."""
    verifier = services.verifier

    assert (await verifier.register("eve@example.com", PASSWORD, "Eve", "E", "Eden")).ok

    first = await verifier.login("eve@example.com", PASSWORD)
    assert first.ok
    old_refresh = first.unwrap().refresh_token
    user_id = first.unwrap().user_id

    assert (await verifier.change_password(user_id, PASSWORD, NEW_PASSWORD)).ok
    assert (await verifier.refresh(old_refresh)).error.kind in TOKEN_FAILURES

    assert (await verifier.login("eve@example.com", NEW_PASSWORD)).ok

    for _ in range(5):
        failed = await verifier.login("eve@example.com", "Wrong-Horse-99")
        assert failed.error.kind == ErrorKind.INVALID_CREDENTIALS

    locked = await verifier.login("eve@example.com", NEW_PASSWORD)
    assert locked.error.kind == ErrorKind.ACCOUNT_LOCKED


@pytest.mark.unit
def test_user_model_defaults():
    user = Users(email="x@example.com", password_hash="h")
    assert user.is_active is True
    assert user.email_verified is False
