"""Login lockout policy with temporary blocks and a permanent latch.

Pure decision logic: nothing in this module touches storage or reads the
clock. Callers pass the persisted ``RateLimitRecord`` (or ``None``) and the
current server time, and persist whatever record comes back.

Escalation policy (defaults):
- 5 consecutive failures: 15 minute block
- 10th block for the same email: permanent block (support must unlock)

A successful login clears the failure counter but never the block count
and never a permanent block.
"""

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from parishgate.core.time import from_iso, to_iso

MAX_ATTEMPTS = 5
BLOCK_DURATION = timedelta(minutes=15)
PERMANENT_BLOCK_AFTER = 10


def normalize_email(email: str) -> str:
    """Lower-case and trim an email so it can be used as a record key."""
    return (email or "").strip().lower()


class LockReason(str, Enum):
    NOT_LOCKED = "not_locked"
    TEMPORARY = "temporary_block"
    PERMANENT = "permanent_block"


@dataclass
class RateLimitRecord:
    """Persisted failure state for one normalized email."""

    email: str
    attempts: int = 0
    last_attempt: datetime | None = None
    is_blocked: bool = False
    block_until: datetime | None = None
    block_count: int = 0
    permanent_block: bool = False
    permanent_block_at: datetime | None = None
    last_successful_login: datetime | None = None
    manually_unlocked: bool = False
    unlocked_at: datetime | None = None

    def to_document(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "attempts": self.attempts,
            "last_attempt": to_iso(self.last_attempt),
            "is_blocked": self.is_blocked,
            "block_until": to_iso(self.block_until),
            "block_count": self.block_count,
            "permanent_block": self.permanent_block,
            "permanent_block_at": to_iso(self.permanent_block_at),
            "last_successful_login": to_iso(self.last_successful_login),
            "manually_unlocked": self.manually_unlocked,
            "unlocked_at": to_iso(self.unlocked_at),
        }

    @classmethod
    def from_document(cls, data: dict[str, Any], email: str | None = None) -> "RateLimitRecord":
        # Missing fields fall back to their zero value so partially written
        # documents (older schema, merge writes) still load.
        return cls(
            email=data.get("email") or email or "",
            attempts=int(data.get("attempts") or 0),
            last_attempt=from_iso(data.get("last_attempt")),
            is_blocked=bool(data.get("is_blocked", False)),
            block_until=from_iso(data.get("block_until")),
            block_count=int(data.get("block_count") or 0),
            permanent_block=bool(data.get("permanent_block", False)),
            permanent_block_at=from_iso(data.get("permanent_block_at")),
            last_successful_login=from_iso(data.get("last_successful_login")),
            manually_unlocked=bool(data.get("manually_unlocked", False)),
            unlocked_at=from_iso(data.get("unlocked_at")),
        )


@dataclass(frozen=True)
class RateLimitStatus:
    """What a login form needs to know about an email's lockout state.

    ``block_until`` is ``None`` while blocked only for a permanent block.
    ``degraded`` marks a best-effort answer produced while the store was
    unreachable.
    """

    attempts: int
    attempts_remaining: int
    is_blocked: bool
    block_until: datetime | None = None
    block_count: int = 0
    last_attempt: datetime | None = None
    degraded: bool = False

    @property
    def is_permanent(self) -> bool:
        return self.is_blocked and self.block_until is None

    @property
    def lock_reason(self) -> LockReason:
        if self.is_permanent:
            return LockReason.PERMANENT
        if self.is_blocked:
            return LockReason.TEMPORARY
        return LockReason.NOT_LOCKED

    def seconds_remaining(self, now: datetime) -> int:
        """Whole seconds until a temporary block lifts (0 when not applicable)."""
        if not self.is_blocked or self.block_until is None:
            return 0
        return max(0, math.ceil((self.block_until - now).total_seconds()))

    def minutes_remaining(self, now: datetime) -> int:
        return math.ceil(self.seconds_remaining(now) / 60)


@dataclass(frozen=True)
class LockoutPolicy:
    """Decide lockout state transitions for a single email."""

    max_attempts: int = MAX_ATTEMPTS
    block_duration: timedelta = BLOCK_DURATION
    permanent_block_after: int = PERMANENT_BLOCK_AFTER

    @classmethod
    def from_settings(cls, settings) -> "LockoutPolicy":
        return cls(
            max_attempts=settings.lockout_max_attempts,
            block_duration=timedelta(minutes=settings.lockout_block_minutes),
            permanent_block_after=settings.lockout_permanent_after,
        )

    def open_status(self, block_count: int = 0, degraded: bool = False) -> RateLimitStatus:
        """Status for an email with no failures on record."""
        return RateLimitStatus(
            attempts=0,
            attempts_remaining=self.max_attempts,
            is_blocked=False,
            block_count=block_count,
            degraded=degraded,
        )

    def _blocked_status(self, record: RateLimitRecord) -> RateLimitStatus:
        return RateLimitStatus(
            attempts=record.attempts,
            attempts_remaining=0,
            is_blocked=True,
            block_until=None if record.permanent_block else record.block_until,
            block_count=record.block_count,
            last_attempt=record.last_attempt,
        )

    @staticmethod
    def is_expired(record: RateLimitRecord | None, now: datetime) -> bool:
        """True when a temporary block is on record and its deadline has passed."""
        if record is None or record.permanent_block or record.block_until is None:
            return False
        return now >= record.block_until

    def evaluate(self, record: RateLimitRecord | None, now: datetime) -> RateLimitStatus:
        """Return whether a login attempt is allowed right now.

        An expired temporary block reports the zeroed status; persisting the
        matching reset (see ``expire``) is the caller's job.
        """
        if record is None:
            return self.open_status()

        # Permanent block dominates any temporary state.
        if record.permanent_block:
            return self._blocked_status(record)

        if record.block_until is not None:
            if now < record.block_until:
                return self._blocked_status(record)
            return self.open_status(block_count=record.block_count)

        attempts = min(max(record.attempts, 0), self.max_attempts)
        return RateLimitStatus(
            attempts=attempts,
            attempts_remaining=max(0, self.max_attempts - attempts),
            is_blocked=False,
            block_count=record.block_count,
            last_attempt=record.last_attempt,
        )

    def expire(self, record: RateLimitRecord | None, now: datetime) -> RateLimitRecord | None:
        """Return the reset record for an expired temporary block, else ``None``."""
        if not self.is_expired(record, now):
            return None
        return replace(
            record,
            attempts=0,
            is_blocked=False,
            block_until=None,
            permanent_block=False,
        )

    def on_failure(
        self, record: RateLimitRecord | None, email: str, now: datetime
    ) -> tuple[RateLimitRecord, RateLimitStatus]:
        """Apply one failed login and return the next record and its status.

        A blocked email does not accumulate attempts. A failure after an
        expired block counts as the first attempt of a fresh window in the
        same transition as the reset.
        """
        if record is None:
            record = RateLimitRecord(email=email)

        if record.permanent_block:
            return record, self._blocked_status(record)
        if record.block_until is not None and now < record.block_until:
            return record, self._blocked_status(record)

        previous = 0 if self.is_expired(record, now) else max(record.attempts, 0)
        attempts = min(previous + 1, self.max_attempts)
        updated = replace(
            record,
            email=record.email or email,
            attempts=attempts,
            last_attempt=now,
            is_blocked=False,
            block_until=None,
        )

        if attempts >= self.max_attempts:
            block_count = record.block_count + 1
            if block_count >= self.permanent_block_after:
                updated = replace(
                    updated,
                    is_blocked=True,
                    block_count=block_count,
                    permanent_block=True,
                    permanent_block_at=now,
                )
            else:
                updated = replace(
                    updated,
                    is_blocked=True,
                    block_count=block_count,
                    block_until=now + self.block_duration,
                )

        return updated, self.evaluate(updated, now)

    def on_success(
        self, record: RateLimitRecord | None, email: str, now: datetime
    ) -> RateLimitRecord | None:
        """Return the record after a successful login, or ``None`` to leave it alone.

        Correct credentials never lift a permanent block.
        """
        if record is None:
            record = RateLimitRecord(email=email)
        if record.permanent_block:
            return None
        return replace(
            record,
            email=record.email or email,
            attempts=0,
            is_blocked=False,
            block_until=None,
            last_successful_login=now,
        )

    def unlock(
        self,
        record: RateLimitRecord | None,
        email: str,
        now: datetime,
        reset_block_count: bool = False,
    ) -> RateLimitRecord:
        """Support intervention: clear temporary and permanent blocks."""
        if record is None:
            record = RateLimitRecord(email=email)
        return replace(
            record,
            email=record.email or email,
            attempts=0,
            is_blocked=False,
            block_until=None,
            block_count=0 if reset_block_count else record.block_count,
            permanent_block=False,
            manually_unlocked=True,
            unlocked_at=now,
        )


default_policy = LockoutPolicy()
