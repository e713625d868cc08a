"""Persisted login lockout state, one document per normalized email.

``AttemptRecorder`` applies ``LockoutPolicy`` decisions to the document
store. Failure increments always run inside a store transaction so two
concurrent bad passwords for the same email are both counted.

Store outages never lock anyone out: reads degrade to "not blocked" and a
failed write still hands back a best-effort status flagged ``degraded``.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from parishgate.core.lockout import (
    LockoutPolicy,
    LockReason,
    RateLimitRecord,
    RateLimitStatus,
    normalize_email,
)
from parishgate.core.time import to_iso, utcnow
from parishgate.services.document_store import DocumentStore, StoreError, Transaction

logger = logging.getLogger(__name__)

RATE_LIMIT_COLLECTION = "rate_limits"


@dataclass(frozen=True)
class LockStatus:
    """Support-facing summary of an email's lock."""

    email: str
    is_locked: bool
    is_permanent: bool
    lock_reason: LockReason
    unlock_time: datetime | None
    remaining_minutes: int
    attempts: int
    attempts_remaining: int
    block_count: int


class AttemptRecorder:
    def __init__(
        self,
        store: DocumentStore,
        policy: LockoutPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._policy = policy or LockoutPolicy()
        self._clock = clock

    @property
    def policy(self) -> LockoutPolicy:
        return self._policy

    def _read(self, email: str) -> RateLimitRecord | None:
        data = self._store.get(RATE_LIMIT_COLLECTION, email)
        if data is None:
            return None
        return RateLimitRecord.from_document(data, email=email)

    def check_status(self, email: str, now: datetime | None = None) -> RateLimitStatus:
        """Return the authoritative status, resetting an expired block on the way."""
        key = normalize_email(email)
        now = now or self._clock()

        try:
            record = self._read(key)
        except StoreError:
            logger.warning("Rate limit read failed for %s; allowing attempt", key, exc_info=True)
            return self._policy.open_status(degraded=True)

        status = self._policy.evaluate(record, now)
        if not self._policy.is_expired(record, now):
            return status

        def apply(txn: Transaction) -> RateLimitStatus:
            # Re-read: a failure recorded since the plain read must survive.
            data = txn.get(RATE_LIMIT_COLLECTION, key)
            fresh = RateLimitRecord.from_document(data, email=key) if data is not None else None
            reset = self._policy.expire(fresh, now)
            if reset is None:
                return self._policy.evaluate(fresh, now)
            txn.update(
                RATE_LIMIT_COLLECTION,
                key,
                {
                    "attempts": reset.attempts,
                    "is_blocked": reset.is_blocked,
                    "block_until": None,
                },
            )
            logger.info("Temporary block expired for %s", key)
            return self._policy.evaluate(reset, now)

        try:
            return self._store.transaction(apply)
        except StoreError:
            logger.warning("Could not persist expired block reset for %s", key, exc_info=True)
            return status

    def record_failure(self, email: str, now: datetime | None = None) -> RateLimitStatus:
        """Count one failed login and return the resulting status."""
        key = normalize_email(email)
        now = now or self._clock()

        def apply(txn: Transaction) -> tuple[int, RateLimitStatus]:
            data = txn.get(RATE_LIMIT_COLLECTION, key)
            record = RateLimitRecord.from_document(data, email=key) if data is not None else None
            previous_blocks = record.block_count if record is not None else 0
            updated, status = self._policy.on_failure(record, key, now)
            if updated is not record:
                txn.set(RATE_LIMIT_COLLECTION, key, updated.to_document())
            return previous_blocks, status

        try:
            previous_blocks, status = self._store.transaction(apply)
        except StoreError:
            logger.error("Failed to record login failure for %s", key, exc_info=True)
            return self._best_effort_failure(key, now)

        if status.block_count > previous_blocks:
            if status.is_permanent:
                logger.warning(
                    "Permanent block applied to %s after %d lockouts", key, status.block_count
                )
            else:
                logger.warning(
                    "Temporary block applied to %s until %s (block %d)",
                    key,
                    status.block_until,
                    status.block_count,
                )
        return status

    def _best_effort_failure(self, key: str, now: datetime) -> RateLimitStatus:
        # The increment could not be persisted; assume it happened so the
        # caller still reports a failed attempt.
        try:
            record = self._read(key)
        except StoreError:
            record = None
        _updated, status = self._policy.on_failure(record, key, now)
        return RateLimitStatus(
            attempts=status.attempts,
            attempts_remaining=status.attempts_remaining,
            is_blocked=status.is_blocked,
            block_until=status.block_until,
            block_count=status.block_count,
            last_attempt=status.last_attempt,
            degraded=True,
        )

    def record_success(self, email: str, now: datetime | None = None) -> None:
        """Clear the failure counter after a successful login (best effort)."""
        key = normalize_email(email)
        now = now or self._clock()
        try:
            record = self._read(key)
            updated = self._policy.on_success(record, key, now)
            if updated is None:
                logger.warning("Cannot reset attempts for %s: account is permanently blocked", key)
                return
            self._store.set(
                RATE_LIMIT_COLLECTION,
                key,
                {
                    "email": updated.email,
                    "attempts": updated.attempts,
                    "is_blocked": updated.is_blocked,
                    "block_until": None,
                    "last_successful_login": to_iso(updated.last_successful_login),
                },
                merge=True,
            )
        except StoreError:
            logger.error("Failed to reset login attempts for %s", key, exc_info=True)

    def get_lock_status(self, email: str, now: datetime | None = None) -> LockStatus:
        key = normalize_email(email)
        now = now or self._clock()
        status = self.check_status(key, now)
        remaining_seconds = status.seconds_remaining(now)
        return LockStatus(
            email=key,
            is_locked=status.is_blocked,
            is_permanent=status.is_permanent,
            lock_reason=status.lock_reason,
            unlock_time=status.block_until if remaining_seconds else None,
            remaining_minutes=status.minutes_remaining(now),
            attempts=status.attempts,
            attempts_remaining=status.attempts_remaining,
            block_count=status.block_count,
        )

    def unlock(
        self, email: str, now: datetime | None = None, reset_block_count: bool = False
    ) -> RateLimitStatus:
        """Lift any block on ``email``. Raises ``StoreError`` if it cannot be saved."""
        key = normalize_email(email)
        now = now or self._clock()

        def apply(txn: Transaction) -> RateLimitRecord:
            data = txn.get(RATE_LIMIT_COLLECTION, key)
            record = RateLimitRecord.from_document(data, email=key) if data is not None else None
            updated = self._policy.unlock(record, key, now, reset_block_count=reset_block_count)
            txn.set(RATE_LIMIT_COLLECTION, key, updated.to_document())
            return updated

        updated = self._store.transaction(apply)
        logger.info("Account %s manually unlocked (block count %d)", key, updated.block_count)
        return self._policy.evaluate(updated, now)
