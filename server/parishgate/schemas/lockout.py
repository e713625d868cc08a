"""Schemas for the admin lockout endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from parishgate.services.lockout import LockStatus


class LockStatusOut(BaseModel):
    email: str
    is_locked: bool
    is_permanent: bool
    lock_reason: str
    unlock_time: datetime | None = None
    remaining_minutes: int = 0
    attempts: int
    attempts_remaining: int
    block_count: int

    @classmethod
    def from_lock_status(cls, status: LockStatus) -> "LockStatusOut":
        return cls(
            email=status.email,
            is_locked=status.is_locked,
            is_permanent=status.is_permanent,
            lock_reason=status.lock_reason.value,
            unlock_time=status.unlock_time,
            remaining_minutes=status.remaining_minutes,
            attempts=status.attempts,
            attempts_remaining=status.attempts_remaining,
            block_count=status.block_count,
        )


class ActivityLogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime
    level: str
    source: str
    message: str
    subject: str | None = None
