"""Activity log service: lightweight audit trail for lockouts and unlocks."""

import logging

from sqlalchemy.orm import Session

from parishgate.core.time import utcnow
from parishgate.models.activity_log import ActivityLog

logger = logging.getLogger(__name__)

LOCKOUT_SOURCE = "lockout"


def log_activity(
    db: Session,
    level: str,
    source: str,
    message: str,
    subject: str | None = None,
    user_id: int | None = None,
) -> ActivityLog:
    """Create an activity log entry."""
    entry = ActivityLog(
        created_at=utcnow(),
        level=level,
        source=source,
        message=message,
        subject=subject,
        user_id=user_id,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def get_recent_activity(
    db: Session,
    limit: int = 50,
    subject: str | None = None,
    source: str | None = None,
) -> list[ActivityLog]:
    """Get recent activity log entries, newest first."""
    query = db.query(ActivityLog)
    if subject is not None:
        query = query.filter(ActivityLog.subject == subject)
    if source is not None:
        query = query.filter(ActivityLog.source == source)
    return query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit).all()
