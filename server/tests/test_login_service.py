"""Tests for LoginService: lockout check, credential check and bookkeeping."""

from datetime import datetime

import pytest

from parishgate.core.lockout import RateLimitRecord
from parishgate.services.document_store import DocumentStore, StoreError
from parishgate.services.identity import (
    Authenticated,
    IdentityProvider,
    InvalidCredentialError,
    InvalidVerificationCodeError,
    MfaChallenge,
    UpstreamThrottleError,
)
from parishgate.services.lockout import RATE_LIMIT_COLLECTION, AttemptRecorder
from parishgate.services.login import LoginOutcomeKind, LoginService

NOW = datetime(2026, 3, 1, 9, 0, 0)
EMAIL = "alice@example.org"
PASSWORD = "correct horse"


class FakeIdentity(IdentityProvider):
    def __init__(self, mfa: bool = False, throttled: bool = False):
        self.mfa = mfa
        self.throttled = throttled
        self.sign_in_calls = 0

    def sign_in(self, email, password):
        self.sign_in_calls += 1
        if self.throttled:
            raise UpstreamThrottleError("slow down")
        if password != PASSWORD:
            raise InvalidCredentialError("bad password")
        if self.mfa:
            return MfaChallenge(resolver_handle=f"handle:{email}")
        return Authenticated(user_id=1, email=email, role="parishioner")

    def email_for_handle(self, resolver_handle):
        return resolver_handle.split(":", 1)[1]

    def resolve_mfa(self, resolver_handle, code):
        if code != "123456":
            raise InvalidVerificationCodeError("bad code")
        return Authenticated(user_id=1, email=self.email_for_handle(resolver_handle), role="parishioner")


class WriteFailingStore(DocumentStore):
    def get(self, collection, key):
        return None

    def set(self, collection, key, fields, merge=False):
        raise StoreError("write failed")

    def update(self, collection, key, fields):
        raise StoreError("write failed")

    def transaction(self, fn):
        raise StoreError("write failed")


@pytest.fixture
def recorder(store) -> AttemptRecorder:
    return AttemptRecorder(store, clock=lambda: NOW)


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def service(recorder, identity) -> LoginService:
    return LoginService(recorder, identity)


class TestAttempt:
    def test_success(self, service):
        outcome = service.attempt(EMAIL, PASSWORD)
        assert outcome.kind == LoginOutcomeKind.AUTHENTICATED
        assert outcome.identity.email == EMAIL
        assert outcome.status.attempts_remaining == 5

    def test_wrong_password_counts(self, service):
        outcome = service.attempt(EMAIL, "nope")
        assert outcome.kind == LoginOutcomeKind.INVALID_CREDENTIALS
        assert outcome.status.attempts_remaining == 4

    def test_fifth_failure_is_newly_blocked(self, service):
        for _ in range(4):
            service.attempt(EMAIL, "nope")
        outcome = service.attempt(EMAIL, "nope")
        assert outcome.kind == LoginOutcomeKind.BLOCKED
        assert outcome.newly_blocked is True
        assert outcome.status.is_blocked is True

    def test_blocked_email_skips_identity_provider(self, service, identity):
        for _ in range(5):
            service.attempt(EMAIL, "nope")
        calls = identity.sign_in_calls

        outcome = service.attempt(EMAIL, PASSWORD)

        assert outcome.kind == LoginOutcomeKind.BLOCKED
        assert outcome.newly_blocked is False
        assert identity.sign_in_calls == calls

    def test_success_resets_counter(self, service):
        service.attempt(EMAIL, "nope")
        service.attempt(EMAIL, "nope")
        service.attempt(EMAIL, PASSWORD)
        assert service.check(EMAIL).attempts_remaining == 5

    def test_upstream_throttle_is_not_counted(self, recorder):
        service = LoginService(recorder, FakeIdentity(throttled=True))
        for _ in range(10):
            outcome = service.attempt(EMAIL, "nope")
            assert outcome.kind == LoginOutcomeKind.UPSTREAM_THROTTLED
        assert service.check(EMAIL).attempts == 0

    def test_permanent_block_survives_correct_password(self, service, store):
        store.set(
            RATE_LIMIT_COLLECTION,
            EMAIL,
            RateLimitRecord(email=EMAIL, attempts=5, is_blocked=True, block_count=10, permanent_block=True).to_document(),
        )
        outcome = service.attempt(EMAIL, PASSWORD)
        assert outcome.kind == LoginOutcomeKind.BLOCKED
        assert outcome.status.is_permanent is True

    def test_store_write_failure_reports_rate_limit_error(self, identity):
        service = LoginService(AttemptRecorder(WriteFailingStore(), clock=lambda: NOW), identity)
        outcome = service.attempt(EMAIL, "nope")
        assert outcome.kind == LoginOutcomeKind.RATE_LIMIT_ERROR
        assert outcome.status.degraded is True

    def test_store_outage_does_not_block_correct_password(self, identity):
        service = LoginService(AttemptRecorder(WriteFailingStore(), clock=lambda: NOW), identity)
        outcome = service.attempt(EMAIL, PASSWORD)
        assert outcome.kind == LoginOutcomeKind.AUTHENTICATED


class TestMfa:
    @pytest.fixture
    def service(self, recorder) -> LoginService:
        return LoginService(recorder, FakeIdentity(mfa=True))

    def test_password_then_code(self, service):
        outcome = service.attempt(EMAIL, PASSWORD)
        assert outcome.kind == LoginOutcomeKind.MFA_REQUIRED
        assert outcome.resolver_handle == f"handle:{EMAIL}"

        outcome = service.complete_mfa(outcome.resolver_handle, "123456")
        assert outcome.kind == LoginOutcomeKind.AUTHENTICATED
        assert outcome.identity.email == EMAIL

    def test_mfa_required_does_not_reset_counter_yet(self, service):
        service.attempt(EMAIL, "nope")
        service.attempt(EMAIL, PASSWORD)
        assert service.check(EMAIL).attempts == 1

    def test_bad_code_raises_and_is_not_counted(self, service):
        handle = service.attempt(EMAIL, PASSWORD).resolver_handle
        with pytest.raises(InvalidVerificationCodeError):
            service.complete_mfa(handle, "000000")
        assert service.check(EMAIL).attempts == 0

    def test_blocked_email_cannot_complete_mfa(self, service, store):
        handle = service.attempt(EMAIL, PASSWORD).resolver_handle
        store.set(
            RATE_LIMIT_COLLECTION,
            EMAIL,
            RateLimitRecord(email=EMAIL, attempts=5, is_blocked=True, block_count=10, permanent_block=True).to_document(),
        )
        outcome = service.complete_mfa(handle, "123456")
        assert outcome.kind == LoginOutcomeKind.BLOCKED
