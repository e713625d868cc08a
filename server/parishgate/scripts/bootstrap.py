"""Make sure the portal has a working admin account at startup.

Parishioner accounts are often imported before anyone signs in, so the check
is for an existing admin, not for an empty users table. A configured admin
who locked themselves out gets their login lockout lifted on the next run.
"""

import sys
from collections.abc import Callable

from sqlalchemy.orm import Session

from parishgate.core.config import get_settings
from parishgate.core.lockout import normalize_email
from parishgate.db.session import SessionLocal
from parishgate.models.user import User, UserRole
from parishgate.services.auth import create_user, get_user_by_email
from parishgate.services.document_store import SqlDocumentStore
from parishgate.services.lockout import AttemptRecorder


def bootstrap_admin(session_factory: Callable[[], Session] = SessionLocal) -> str:
    """Create, promote or unlock the configured admin. Returns what was done."""
    settings = get_settings()
    if not settings.bootstrap_admin_email or not settings.bootstrap_admin_password:
        return "skipped"

    email = normalize_email(settings.bootstrap_admin_email)
    db = session_factory()
    try:
        user = get_user_by_email(db, email)
        if user is None:
            admins = db.query(User).filter(User.role == UserRole.ADMIN.value).count()
            if admins:
                return "skipped"
            create_user(db, email, settings.bootstrap_admin_password, role=UserRole.ADMIN.value)
            action = "created"
        elif user.role != UserRole.ADMIN.value:
            user.role = UserRole.ADMIN.value
            db.commit()
            action = "promoted"
        else:
            action = "exists"
    finally:
        db.close()

    recorder = AttemptRecorder(SqlDocumentStore(session_factory))
    if recorder.check_status(email).is_blocked:
        recorder.unlock(email)
        action += "+unlocked"
    return action


def main() -> None:
    try:
        action = bootstrap_admin()
    except Exception as e:
        print(f"Bootstrap error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Bootstrap: admin {action}")


if __name__ == "__main__":
    main()
