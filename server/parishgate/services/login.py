"""Login flow: lockout check, credential check, then bookkeeping."""

import logging
from dataclasses import dataclass
from enum import Enum

from parishgate.core.lockout import RateLimitStatus, normalize_email
from parishgate.services.identity import (
    Authenticated,
    IdentityProvider,
    InvalidCredentialError,
    MfaChallenge,
    UpstreamThrottleError,
)
from parishgate.services.lockout import AttemptRecorder

logger = logging.getLogger(__name__)


class LoginOutcomeKind(str, Enum):
    AUTHENTICATED = "authenticated"
    MFA_REQUIRED = "mfa_required"
    INVALID_CREDENTIALS = "invalid_credentials"
    BLOCKED = "blocked"
    UPSTREAM_THROTTLED = "upstream_throttled"
    RATE_LIMIT_ERROR = "rate_limit_error"


@dataclass(frozen=True)
class LoginOutcome:
    kind: LoginOutcomeKind
    status: RateLimitStatus
    identity: Authenticated | None = None
    resolver_handle: str | None = None
    newly_blocked: bool = False


class LoginService:
    def __init__(self, recorder: AttemptRecorder, identity: IdentityProvider) -> None:
        self._recorder = recorder
        self._identity = identity

    @property
    def recorder(self) -> AttemptRecorder:
        return self._recorder

    def check(self, email: str) -> RateLimitStatus:
        return self._recorder.check_status(email)

    def attempt(self, email: str, password: str) -> LoginOutcome:
        key = normalize_email(email)

        status = self._recorder.check_status(key)
        if status.is_blocked:
            return LoginOutcome(kind=LoginOutcomeKind.BLOCKED, status=status)

        try:
            result = self._identity.sign_in(key, password)
        except UpstreamThrottleError:
            # The provider is already throttling; counting it here too would
            # stack two lockouts on one event.
            logger.info("Identity provider throttled login for %s", key)
            return LoginOutcome(kind=LoginOutcomeKind.UPSTREAM_THROTTLED, status=status)
        except InvalidCredentialError:
            return self._failed(key)

        if isinstance(result, MfaChallenge):
            return LoginOutcome(
                kind=LoginOutcomeKind.MFA_REQUIRED,
                status=status,
                resolver_handle=result.resolver_handle,
            )

        self._recorder.record_success(key)
        return LoginOutcome(
            kind=LoginOutcomeKind.AUTHENTICATED,
            status=self._recorder.policy.open_status(block_count=status.block_count),
            identity=result,
        )

    def complete_mfa(self, resolver_handle: str, code: str) -> LoginOutcome:
        """Finish a sign-in that was answered with an ``MfaChallenge``.

        Raises the provider's ``IdentityError`` subclasses for bad codes or
        expired handles; those do not count against the lockout.
        """
        email = self._identity.email_for_handle(resolver_handle)
        status = self._recorder.check_status(email)
        if status.is_blocked:
            return LoginOutcome(kind=LoginOutcomeKind.BLOCKED, status=status)

        identity = self._identity.resolve_mfa(resolver_handle, code)
        self._recorder.record_success(identity.email)
        return LoginOutcome(
            kind=LoginOutcomeKind.AUTHENTICATED,
            status=self._recorder.policy.open_status(block_count=status.block_count),
            identity=identity,
        )

    def _failed(self, email: str) -> LoginOutcome:
        status = self._recorder.record_failure(email)
        if status.degraded:
            return LoginOutcome(kind=LoginOutcomeKind.RATE_LIMIT_ERROR, status=status)
        if status.is_blocked:
            return LoginOutcome(kind=LoginOutcomeKind.BLOCKED, status=status, newly_blocked=True)
        return LoginOutcome(kind=LoginOutcomeKind.INVALID_CREDENTIALS, status=status)
