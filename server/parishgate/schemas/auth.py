from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from parishgate.core.lockout import RateLimitStatus
from parishgate.core.time import utcnow


class TokenData(BaseModel):
    email: str | None = None


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=1024)


class MfaVerifyRequest(BaseModel):
    resolver_handle: str = Field(..., min_length=1, max_length=4096)
    code: str = Field(..., min_length=6, max_length=8)


class LoginResponse(BaseModel):
    kind: Literal["authenticated", "mfa_required"]
    access_token: str | None = None
    token_type: str = "bearer"
    resolver_handle: str | None = None


class RateLimitStatusOut(BaseModel):
    attempts: int
    attempts_remaining: int
    is_blocked: bool
    is_permanent: bool
    block_until: datetime | None = None
    seconds_remaining: int = 0
    block_count: int = 0
    lock_reason: str = "not_locked"

    @classmethod
    def from_status(cls, status: RateLimitStatus, now: datetime | None = None) -> "RateLimitStatusOut":
        now = now or utcnow()
        return cls(
            attempts=status.attempts,
            attempts_remaining=status.attempts_remaining,
            is_blocked=status.is_blocked,
            is_permanent=status.is_permanent,
            block_until=status.block_until,
            seconds_remaining=status.seconds_remaining(now),
            block_count=status.block_count,
            lock_reason=status.lock_reason.value,
        )


class LoginErrorDetail(BaseModel):
    """Body of ``detail`` on every rejected login."""

    code: str
    message: str
    rate_limit: RateLimitStatusOut | None = None
