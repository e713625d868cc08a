import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from parishgate.api.deps import get_current_user, get_db, get_login_service
from parishgate.core.config import get_settings
from parishgate.core.lockout import RateLimitStatus, normalize_email
from parishgate.core.rate_limit import limiter
from parishgate.core.time import utcnow
from parishgate.models.user import User
from parishgate.schemas.auth import (
    LoginErrorDetail,
    LoginRequest,
    LoginResponse,
    MfaVerifyRequest,
    RateLimitStatusOut,
)
from parishgate.schemas.user import UserOut
from parishgate.services.activity_log import LOCKOUT_SOURCE, log_activity
from parishgate.services.auth import create_access_token
from parishgate.services.identity import InvalidVerificationCodeError, MfaSessionExpiredError
from parishgate.services.login import LoginOutcome, LoginOutcomeKind, LoginService

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)

PERMANENT_BLOCK_MESSAGE = (
    "This account has been locked after repeated failed sign-in attempts. "
    "Please contact parish support to restore access."
)
RETRY_LATER_MESSAGE = "Unable to process login attempt. Please try again."


def _error(
    status_code: int,
    code: str,
    message: str,
    rate_limit: RateLimitStatus | None = None,
    headers: dict[str, str] | None = None,
    now: datetime | None = None,
) -> HTTPException:
    detail = LoginErrorDetail(
        code=code,
        message=message,
        rate_limit=RateLimitStatusOut.from_status(rate_limit, now) if rate_limit else None,
    )
    return HTTPException(
        status_code=status_code,
        detail=detail.model_dump(mode="json"),
        headers=headers,
    )


def _blocked_error(rate_limit: RateLimitStatus) -> HTTPException:
    if rate_limit.is_permanent:
        return _error(
            status.HTTP_403_FORBIDDEN,
            "permanently_blocked",
            PERMANENT_BLOCK_MESSAGE,
            rate_limit,
        )
    now = utcnow()
    seconds_remaining = rate_limit.seconds_remaining(now)
    mins = rate_limit.minutes_remaining(now)
    return _error(
        status.HTTP_429_TOO_MANY_REQUESTS,
        "temporarily_blocked",
        f"Too many failed attempts. Try again in {mins} minutes.",
        rate_limit,
        headers={"Retry-After": str(seconds_remaining)},
        now=now,
    )


def _audit_new_block(db: Session, email: str, rate_limit: RateLimitStatus) -> None:
    if rate_limit.is_permanent:
        message = f"Permanent block after {rate_limit.block_count} lockouts"
    else:
        message = f"Temporary block until {rate_limit.block_until.isoformat()}"
    log_activity(db, "warning", LOCKOUT_SOURCE, message, subject=email)


def _respond(outcome: LoginOutcome, db: Session, email: str) -> LoginResponse:
    if outcome.kind == LoginOutcomeKind.AUTHENTICATED:
        access_token = create_access_token(data={"sub": outcome.identity.email})
        return LoginResponse(kind="authenticated", access_token=access_token)

    if outcome.kind == LoginOutcomeKind.MFA_REQUIRED:
        return LoginResponse(kind="mfa_required", resolver_handle=outcome.resolver_handle)

    if outcome.kind == LoginOutcomeKind.BLOCKED:
        if outcome.newly_blocked:
            _audit_new_block(db, email, outcome.status)
        raise _blocked_error(outcome.status)

    if outcome.kind == LoginOutcomeKind.UPSTREAM_THROTTLED:
        raise _error(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "upstream_throttled",
            "Too many attempts. Try again later.",
        )

    if outcome.kind == LoginOutcomeKind.RATE_LIMIT_ERROR:
        raise _error(
            status.HTTP_401_UNAUTHORIZED,
            "rate_limit_error",
            RETRY_LATER_MESSAGE,
            outcome.status,
            headers={"WWW-Authenticate": "Bearer"},
        )

    remaining = outcome.status.attempts_remaining
    raise _error(
        status.HTTP_401_UNAUTHORIZED,
        "invalid_credentials",
        f"Invalid email or password. {remaining} attempt(s) remaining.",
        outcome.status,
        headers={"WWW-Authenticate": "Bearer"},
    )


@router.get("/status", response_model=RateLimitStatusOut)
@limiter.limit(lambda: f"{settings.status_rate_limit_per_minute}/minute")
def login_status(
    request: Request,
    email: str = Query(..., min_length=3, max_length=255),
    service: LoginService = Depends(get_login_service),
) -> RateLimitStatusOut:
    """Authoritative lockout status, checked by the login form before every submit."""
    return RateLimitStatusOut.from_status(service.check(email))


@router.post("/login", response_model=LoginResponse)
@limiter.limit(lambda: f"{settings.login_rate_limit_per_minute}/minute")
def login(
    request: Request,
    credentials: LoginRequest,
    db: Session = Depends(get_db),
    service: LoginService = Depends(get_login_service),
) -> LoginResponse:
    email = normalize_email(credentials.email)
    outcome = service.attempt(email, credentials.password)
    return _respond(outcome, db, email)


@router.post("/mfa/verify", response_model=LoginResponse)
@limiter.limit(lambda: f"{settings.login_rate_limit_per_minute}/minute")
def verify_mfa(
    request: Request,
    payload: MfaVerifyRequest,
    db: Session = Depends(get_db),
    service: LoginService = Depends(get_login_service),
) -> LoginResponse:
    try:
        outcome = service.complete_mfa(payload.resolver_handle, payload.code)
    except MfaSessionExpiredError:
        raise _error(
            status.HTTP_401_UNAUTHORIZED,
            "verification_expired",
            "Verification code has expired. Please sign in again.",
        ) from None
    except InvalidVerificationCodeError:
        raise _error(
            status.HTTP_401_UNAUTHORIZED,
            "invalid_verification_code",
            "Invalid verification code.",
        ) from None
    return _respond(outcome, db, outcome.identity.email if outcome.identity else "")


@router.get("/me", response_model=UserOut)
def get_me(current_user: User = Depends(get_current_user)) -> User:
    return current_user
