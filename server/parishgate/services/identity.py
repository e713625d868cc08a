"""Email/password identity provider with an optional TOTP second factor.

``sign_in`` returns a tagged result instead of a provider-specific object:
``Authenticated`` when the password is enough, ``MfaChallenge`` when the
user still has to enter an authenticator code. Rejections are exceptions so
callers can route credential errors and upstream throttling differently.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

import jwt
import pyotp
from sqlalchemy.orm import Session

from parishgate.core.config import get_settings
from parishgate.core.lockout import normalize_email
from parishgate.models.user import User
from parishgate.services.auth import (
    MFA_TOKEN_PURPOSE,
    create_access_token,
    get_password_hash,
    get_user_by_email,
    verify_password,
)

logger = logging.getLogger(__name__)


class IdentityError(Exception):
    """Base class for sign-in rejections."""


class InvalidCredentialError(IdentityError):
    """Unknown account, wrong password or disabled account."""


class UpstreamThrottleError(IdentityError):
    """The identity provider is rate limiting this caller on its own."""


class InvalidVerificationCodeError(IdentityError):
    """The second-factor code did not match."""


class MfaSessionExpiredError(IdentityError):
    """The MFA resolver handle is expired or was tampered with."""


@dataclass(frozen=True)
class Authenticated:
    user_id: int
    email: str
    role: str


@dataclass(frozen=True)
class MfaChallenge:
    resolver_handle: str


SignInResult = Authenticated | MfaChallenge


class IdentityProvider:
    """Interface for whatever verifies passwords and second factors."""

    def sign_in(self, email: str, password: str) -> SignInResult:
        raise NotImplementedError

    def resolve_mfa(self, resolver_handle: str, code: str) -> Authenticated:
        raise NotImplementedError

    def email_for_handle(self, resolver_handle: str) -> str:
        raise NotImplementedError


# Pre-computed hash for timing equalization when user is not found.
# Prevents attackers from enumerating valid accounts via response time differences.
_DUMMY_HASH = get_password_hash("dummy-timing-equalization")


class LocalIdentityProvider(IdentityProvider):
    """Checks credentials against the ``users`` table."""

    def __init__(self, db: Session) -> None:
        self._db = db
        self._settings = get_settings()

    def sign_in(self, email: str, password: str) -> SignInResult:
        user = get_user_by_email(self._db, email)
        if not user:
            verify_password(password, _DUMMY_HASH)
            raise InvalidCredentialError("Invalid email or password")
        if not verify_password(password, user.password_hash):
            raise InvalidCredentialError("Invalid email or password")
        if not user.is_active:
            raise InvalidCredentialError("Invalid email or password")

        if user.mfa_enabled:
            handle = create_access_token(
                data={"sub": user.email},
                expires_delta=timedelta(minutes=self._settings.mfa_pending_expire_minutes),
                purpose=MFA_TOKEN_PURPOSE,
            )
            return MfaChallenge(resolver_handle=handle)

        return _authenticated(user)

    def _decode_handle(self, resolver_handle: str) -> str:
        try:
            payload = jwt.decode(
                resolver_handle,
                self._settings.jwt_secret,
                algorithms=[self._settings.jwt_algorithm],
            )
        except jwt.ExpiredSignatureError as exc:
            raise MfaSessionExpiredError("Verification code has expired") from exc
        except jwt.PyJWTError as exc:
            raise MfaSessionExpiredError("Invalid verification session") from exc
        email = payload.get("sub")
        if not email or payload.get("purpose") != MFA_TOKEN_PURPOSE:
            raise MfaSessionExpiredError("Invalid verification session")
        return normalize_email(email)

    def email_for_handle(self, resolver_handle: str) -> str:
        return self._decode_handle(resolver_handle)

    def resolve_mfa(self, resolver_handle: str, code: str) -> Authenticated:
        email = self._decode_handle(resolver_handle)
        user = get_user_by_email(self._db, email)
        if not user or not user.is_active or not user.mfa_enabled:
            raise MfaSessionExpiredError("Invalid verification session")

        totp = pyotp.TOTP(user.mfa_secret)
        if not totp.verify(code.strip(), valid_window=1):
            logger.info("Rejected TOTP code for %s", email)
            raise InvalidVerificationCodeError("Invalid verification code")
        return _authenticated(user)


def _authenticated(user: User) -> Authenticated:
    return Authenticated(user_id=user.id, email=user.email, role=user.role)


def provisioning_uri(user: User, secret: str) -> str:
    """otpauth:// URI an authenticator app can scan for ``secret``."""
    issuer = get_settings().mfa_issuer_name
    return pyotp.TOTP(secret).provisioning_uri(name=user.email, issuer_name=issuer)


def enroll_totp(db: Session, user: User) -> str:
    """Generate and store a fresh TOTP secret for ``user``; returns the secret."""
    secret = pyotp.random_base32()
    user.mfa_secret = secret
    db.commit()
    return secret
