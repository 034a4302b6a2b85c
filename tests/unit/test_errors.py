"""Tests for the error taxonomy and its HTTP mapping."""

import pytest

from identity_core.core.errors import (
    INVALID_TOKEN_MESSAGE,
    TOKEN_FAILURES,
    ErrorKind,
    Failure,
    Result,
    http_exception_for,
)


@pytest.mark.unit
class TestResult:
    def test_success(self):
        result = Result.success(42)
        assert result.ok
        assert result.unwrap() == 42

    def test_failure_unwrap_raises(self):
        result = Result.fail(ErrorKind.VALIDATION_ERROR, "bad")
        assert not result.ok
        with pytest.raises(ValueError):
            result.unwrap()


@pytest.mark.unit
class TestPublicMapping:
    @pytest.mark.parametrize("kind", sorted(TOKEN_FAILURES))
    def test_token_failures_are_indistinguishable(self, kind):
        assert Failure(kind).public() == (401, INVALID_TOKEN_MESSAGE)

    def test_status_codes(self):
        assert Failure(ErrorKind.INVALID_CREDENTIALS).public()[0] == 401
        assert Failure(ErrorKind.ACCOUNT_LOCKED).public()[0] == 423
        assert Failure(ErrorKind.ACCOUNT_INACTIVE).public()[0] == 403
        assert Failure(ErrorKind.RATE_LIMIT_EXCEEDED).public()[0] == 429
        assert Failure(ErrorKind.PASSWORD_REUSED).public()[0] == 400
        assert Failure(ErrorKind.TENANT_UNRESOLVED).public()[0] == 400

    def test_policy_detail_is_shown(self):
        failure = Failure(ErrorKind.PASSWORD_POLICY_VIOLATION, "Password must contain a digit")
        assert failure.public() == (400, "Password must contain a digit")

    def test_internal_detail_is_hidden(self):
        failure = Failure(ErrorKind.INVALID_CREDENTIALS, "unknown email")
        assert "unknown" not in failure.public()[1]

    def test_every_kind_has_a_mapping(self):
        for kind in ErrorKind:
            code, message = Failure(kind).public()
            assert 400 <= code < 500
            assert message

    def test_retry_after_header(self):
        exc = http_exception_for(Failure(ErrorKind.ACCOUNT_LOCKED, retry_after=120))
        assert exc.status_code == 423
        assert exc.headers == {"Retry-After": "120"}

    def test_no_retry_after_for_other_kinds(self):
        exc = http_exception_for(Failure(ErrorKind.INVALID_CREDENTIALS))
        assert exc.headers is None
