from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from parishgate.core.time import utcnow
from parishgate.models.base import Base


class UserRole(str, Enum):
    ADMIN = "admin"
    PARISHIONER = "parishioner"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    full_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.PARISHIONER.value, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    # Base32 TOTP secret; set when the user has enrolled an authenticator app
    mfa_secret: Mapped[str | None] = mapped_column(String(64), nullable=True)

    @property
    def mfa_enabled(self) -> bool:
        return bool(self.mfa_secret)
