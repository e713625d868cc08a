"""Admin API endpoints for inspecting and lifting login lockouts."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi import Request as FastAPIRequest
from sqlalchemy.orm import Session

from parishgate.api.deps import get_attempt_recorder, get_current_admin, get_db
from parishgate.core.lockout import normalize_email
from parishgate.core.rate_limit import limiter
from parishgate.models.user import User
from parishgate.schemas.lockout import ActivityLogEntry, LockStatusOut
from parishgate.services.activity_log import LOCKOUT_SOURCE, get_recent_activity, log_activity
from parishgate.services.document_store import StoreError
from parishgate.services.lockout import AttemptRecorder

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/lockouts/{email}", response_model=LockStatusOut)
@limiter.limit("120/minute")
def admin_lock_status(
    request: FastAPIRequest,
    email: str,
    recorder: AttemptRecorder = Depends(get_attempt_recorder),
    _admin: User = Depends(get_current_admin),
) -> LockStatusOut:
    return LockStatusOut.from_lock_status(recorder.get_lock_status(email))


@router.post("/lockouts/{email}/unlock", response_model=LockStatusOut)
def admin_unlock(
    email: str,
    reset_block_count: bool = Query(default=False),
    db: Session = Depends(get_db),
    recorder: AttemptRecorder = Depends(get_attempt_recorder),
    admin: User = Depends(get_current_admin),
) -> LockStatusOut:
    key = normalize_email(email)
    try:
        recorder.unlock(key, reset_block_count=reset_block_count)
    except StoreError:
        logger.exception("Manual unlock failed for %s", key)
        raise HTTPException(status_code=503, detail="Failed to unlock account") from None

    log_activity(
        db,
        "info",
        LOCKOUT_SOURCE,
        f"Manually unlocked by {admin.email}"
        + (" (block count reset)" if reset_block_count else ""),
        subject=key,
        user_id=admin.id,
    )
    return LockStatusOut.from_lock_status(recorder.get_lock_status(key))


@router.get("/activity", response_model=list[ActivityLogEntry])
def admin_activity(
    subject: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    _admin: User = Depends(get_current_admin),
) -> list[ActivityLogEntry]:
    entries = get_recent_activity(
        db,
        limit=limit,
        subject=normalize_email(subject) if subject else None,
        source=LOCKOUT_SOURCE,
    )
    return [ActivityLogEntry.model_validate(entry) for entry in entries]
