from parishgate.models.activity_log import ActivityLog
from parishgate.models.base import Base
from parishgate.models.document import Document
from parishgate.models.user import User

__all__ = [
    "Base",
    "User",
    "Document",
    "ActivityLog",
]
