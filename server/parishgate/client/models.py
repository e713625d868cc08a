"""Client-side view of the server's login responses."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from parishgate.core.lockout import RateLimitStatus


class ResponseKind(str, Enum):
    AUTHENTICATED = "authenticated"
    MFA_REQUIRED = "mfa_required"
    INVALID_CREDENTIALS = "invalid_credentials"
    BLOCKED = "blocked"
    UPSTREAM_THROTTLED = "upstream_throttled"
    RATE_LIMIT_ERROR = "rate_limit_error"
    INVALID_VERIFICATION_CODE = "invalid_verification_code"
    VERIFICATION_EXPIRED = "verification_expired"
    ERROR = "error"


@dataclass(frozen=True)
class ServerStatus:
    """Lockout status as reported by the server.

    ``seconds_remaining`` is measured on the server's clock, so the client
    never compares its own clock against a server timestamp.
    """

    attempts: int
    attempts_remaining: int
    is_blocked: bool
    is_permanent: bool = False
    seconds_remaining: int = 0
    block_count: int = 0

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "ServerStatus":
        return cls(
            attempts=int(data.get("attempts") or 0),
            attempts_remaining=int(data.get("attempts_remaining") or 0),
            is_blocked=bool(data.get("is_blocked", False)),
            is_permanent=bool(data.get("is_permanent", False)),
            seconds_remaining=int(data.get("seconds_remaining") or 0),
            block_count=int(data.get("block_count") or 0),
        )

    @classmethod
    def from_status(cls, status: RateLimitStatus, now: datetime) -> "ServerStatus":
        return cls(
            attempts=status.attempts,
            attempts_remaining=status.attempts_remaining,
            is_blocked=status.is_blocked,
            is_permanent=status.is_permanent,
            seconds_remaining=status.seconds_remaining(now),
            block_count=status.block_count,
        )


@dataclass(frozen=True)
class LoginResponse:
    kind: ResponseKind
    status: ServerStatus | None = None
    message: str | None = None
    access_token: str | None = None
    resolver_handle: str | None = None
    email: str | None = None
