"""Tests for the login lockout policy (temporary blocks and permanent latch)."""

from datetime import datetime, timedelta

from parishgate.core.lockout import (
    BLOCK_DURATION,
    MAX_ATTEMPTS,
    PERMANENT_BLOCK_AFTER,
    LockoutPolicy,
    LockReason,
    RateLimitRecord,
    RateLimitStatus,
    normalize_email,
)

NOW = datetime(2026, 3, 1, 9, 0, 0)
EMAIL = "alice@example.org"


def _fail(policy: LockoutPolicy, record: RateLimitRecord | None, times: int, now: datetime = NOW):
    status = None
    for _ in range(times):
        record, status = policy.on_failure(record, EMAIL, now)
    return record, status


class TestNormalizeEmail:
    def test_lowercases_and_trims(self):
        assert normalize_email("  Alice@Example.ORG ") == "alice@example.org"

    def test_none_becomes_empty(self):
        assert normalize_email(None) == ""


class TestEvaluate:
    def test_no_record_is_open(self):
        status = LockoutPolicy().evaluate(None, NOW)
        assert status.is_blocked is False
        assert status.attempts == 0
        assert status.attempts_remaining == MAX_ATTEMPTS
        assert status.lock_reason == LockReason.NOT_LOCKED

    def test_counts_attempts_below_threshold(self):
        record = RateLimitRecord(email=EMAIL, attempts=3, last_attempt=NOW)
        status = LockoutPolicy().evaluate(record, NOW)
        assert status.is_blocked is False
        assert status.attempts == 3
        assert status.attempts_remaining == 2

    def test_active_temporary_block(self):
        record = RateLimitRecord(
            email=EMAIL,
            attempts=5,
            is_blocked=True,
            block_until=NOW + timedelta(minutes=10),
            block_count=1,
        )
        status = LockoutPolicy().evaluate(record, NOW)
        assert status.is_blocked is True
        assert status.attempts_remaining == 0
        assert status.block_until == NOW + timedelta(minutes=10)
        assert status.is_permanent is False
        assert status.lock_reason == LockReason.TEMPORARY

    def test_expired_block_reports_zeroed_status(self):
        record = RateLimitRecord(
            email=EMAIL,
            attempts=5,
            is_blocked=True,
            block_until=NOW - timedelta(seconds=1),
            block_count=2,
        )
        status = LockoutPolicy().evaluate(record, NOW)
        assert status.is_blocked is False
        assert status.attempts == 0
        assert status.attempts_remaining == MAX_ATTEMPTS
        assert status.block_count == 2

    def test_block_lifts_exactly_at_deadline(self):
        record = RateLimitRecord(email=EMAIL, attempts=5, is_blocked=True, block_until=NOW)
        assert LockoutPolicy().evaluate(record, NOW).is_blocked is False

    def test_permanent_block_dominates_temporary_fields(self):
        # Leftover temporary deadline in the past must not unlock a permanent block
        record = RateLimitRecord(
            email=EMAIL,
            attempts=5,
            is_blocked=True,
            block_until=NOW - timedelta(hours=1),
            block_count=10,
            permanent_block=True,
        )
        status = LockoutPolicy().evaluate(record, NOW)
        assert status.is_blocked is True
        assert status.block_until is None
        assert status.is_permanent is True
        assert status.lock_reason == LockReason.PERMANENT

    def test_attempts_are_clamped(self):
        record = RateLimitRecord(email=EMAIL, attempts=42)
        status = LockoutPolicy().evaluate(record, NOW)
        assert status.attempts == MAX_ATTEMPTS
        assert status.attempts_remaining == 0


class TestOnFailure:
    def test_first_failure_creates_record(self):
        record, status = LockoutPolicy().on_failure(None, EMAIL, NOW)
        assert record.email == EMAIL
        assert record.attempts == 1
        assert record.last_attempt == NOW
        assert status.attempts_remaining == MAX_ATTEMPTS - 1
        assert status.is_blocked is False

    def test_four_failures_do_not_block(self):
        _record, status = _fail(LockoutPolicy(), None, 4)
        assert status.is_blocked is False
        assert status.attempts_remaining == 1

    def test_fifth_failure_blocks_for_block_duration(self):
        record, status = _fail(LockoutPolicy(), None, 5)
        assert status.is_blocked is True
        assert status.block_until == NOW + BLOCK_DURATION
        assert status.block_count == 1
        assert record.is_blocked is True
        assert record.attempts == MAX_ATTEMPTS

    def test_failure_while_blocked_changes_nothing(self):
        policy = LockoutPolicy()
        record, _ = _fail(policy, None, 5)
        later = NOW + timedelta(minutes=5)
        again, status = policy.on_failure(record, EMAIL, later)
        assert again is record
        assert status.block_until == NOW + BLOCK_DURATION
        assert status.block_count == 1

    def test_failure_after_expiry_starts_fresh_window(self):
        policy = LockoutPolicy()
        record, _ = _fail(policy, None, 5)
        after = NOW + BLOCK_DURATION + timedelta(seconds=1)
        record, status = policy.on_failure(record, EMAIL, after)
        assert record.attempts == 1
        assert record.block_until is None
        assert status.is_blocked is False
        assert status.attempts_remaining == MAX_ATTEMPTS - 1
        assert status.block_count == 1

    def test_tenth_lockout_is_permanent(self):
        policy = LockoutPolicy()
        record = RateLimitRecord(email=EMAIL, block_count=PERMANENT_BLOCK_AFTER - 1)
        record, status = _fail(policy, record, 5)
        assert record.permanent_block is True
        assert record.permanent_block_at == NOW
        assert record.block_count == PERMANENT_BLOCK_AFTER
        assert status.is_permanent is True
        assert status.block_until is None

    def test_ninth_lockout_is_still_temporary(self):
        policy = LockoutPolicy()
        record = RateLimitRecord(email=EMAIL, block_count=PERMANENT_BLOCK_AFTER - 2)
        record, status = _fail(policy, record, 5)
        assert record.permanent_block is False
        assert status.is_permanent is False
        assert status.block_count == PERMANENT_BLOCK_AFTER - 1

    def test_escalation_across_windows(self):
        policy = LockoutPolicy()
        record = None
        now = NOW
        for _ in range(PERMANENT_BLOCK_AFTER):
            record, status = _fail(policy, record, MAX_ATTEMPTS, now)
            now = now + BLOCK_DURATION + timedelta(seconds=1)
        assert status.is_permanent is True
        assert record.block_count == PERMANENT_BLOCK_AFTER

    def test_permanent_block_ignores_more_failures(self):
        policy = LockoutPolicy()
        record = RateLimitRecord(email=EMAIL, attempts=5, is_blocked=True, block_count=10, permanent_block=True)
        again, status = policy.on_failure(record, EMAIL, NOW + timedelta(days=30))
        assert again is record
        assert status.is_permanent is True

    def test_custom_policy(self):
        policy = LockoutPolicy(max_attempts=2, block_duration=timedelta(minutes=1), permanent_block_after=2)
        record, status = _fail(policy, None, 2)
        assert status.block_until == NOW + timedelta(minutes=1)
        record, status = _fail(policy, record, 2, NOW + timedelta(minutes=2))
        assert status.is_permanent is True


class TestOnSuccess:
    def test_resets_attempts_keeps_block_count(self):
        record = RateLimitRecord(email=EMAIL, attempts=3, block_count=4)
        updated = LockoutPolicy().on_success(record, EMAIL, NOW)
        assert updated.attempts == 0
        assert updated.block_count == 4
        assert updated.last_successful_login == NOW

    def test_creates_record_when_missing(self):
        updated = LockoutPolicy().on_success(None, EMAIL, NOW)
        assert updated.email == EMAIL
        assert updated.attempts == 0

    def test_never_lifts_permanent_block(self):
        record = RateLimitRecord(email=EMAIL, is_blocked=True, block_count=10, permanent_block=True)
        assert LockoutPolicy().on_success(record, EMAIL, NOW) is None


class TestUnlock:
    def test_clears_permanent_block_and_keeps_count(self):
        record = RateLimitRecord(email=EMAIL, attempts=5, is_blocked=True, block_count=10, permanent_block=True)
        updated = LockoutPolicy().unlock(record, EMAIL, NOW)
        assert updated.permanent_block is False
        assert updated.is_blocked is False
        assert updated.attempts == 0
        assert updated.block_count == 10
        assert updated.manually_unlocked is True
        assert updated.unlocked_at == NOW

    def test_can_reset_block_count(self):
        record = RateLimitRecord(email=EMAIL, block_count=7)
        updated = LockoutPolicy().unlock(record, EMAIL, NOW, reset_block_count=True)
        assert updated.block_count == 0

    def test_unlocked_without_reset_relatches_on_next_lockout(self):
        policy = LockoutPolicy()
        record = RateLimitRecord(email=EMAIL, is_blocked=True, block_count=10, permanent_block=True)
        record = policy.unlock(record, EMAIL, NOW)
        _record, status = _fail(policy, record, 5)
        assert status.is_permanent is True


class TestRateLimitStatus:
    def test_seconds_remaining_rounds_up(self):
        status = RateLimitStatus(
            attempts=5,
            attempts_remaining=0,
            is_blocked=True,
            block_until=NOW + timedelta(seconds=90, milliseconds=200),
        )
        assert status.seconds_remaining(NOW) == 91
        assert status.minutes_remaining(NOW) == 2

    def test_seconds_remaining_zero_for_permanent(self):
        status = RateLimitStatus(attempts=5, attempts_remaining=0, is_blocked=True)
        assert status.seconds_remaining(NOW) == 0

    def test_never_negative(self):
        status = RateLimitStatus(
            attempts=5, attempts_remaining=0, is_blocked=True, block_until=NOW - timedelta(minutes=1)
        )
        assert status.seconds_remaining(NOW) == 0


class TestRecordDocument:
    def test_round_trips_through_document(self):
        record = RateLimitRecord(
            email=EMAIL,
            attempts=5,
            last_attempt=NOW,
            is_blocked=True,
            block_until=NOW + BLOCK_DURATION,
            block_count=3,
        )
        assert RateLimitRecord.from_document(record.to_document()) == record

    def test_partial_document_loads_with_defaults(self):
        record = RateLimitRecord.from_document({"attempts": 2}, email=EMAIL)
        assert record.email == EMAIL
        assert record.attempts == 2
        assert record.block_count == 0
        assert record.permanent_block is False
        assert record.block_until is None
