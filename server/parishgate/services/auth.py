from datetime import UTC, datetime, timedelta

import bcrypt
import jwt
from sqlalchemy.orm import Session

from parishgate.core.config import get_settings
from parishgate.core.lockout import normalize_email
from parishgate.models.user import User
from parishgate.schemas.auth import TokenData

settings = get_settings()

ACCESS_TOKEN_PURPOSE = "access"
MFA_TOKEN_PURPOSE = "mfa"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def create_access_token(
    data: dict,
    expires_delta: timedelta | None = None,
    purpose: str = ACCESS_TOKEN_PURPOSE,
) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(UTC) + expires_delta
    else:
        expire = datetime.now(UTC) + timedelta(minutes=settings.jwt_expire_minutes)
    to_encode.update({"exp": expire, "purpose": purpose})
    encoded_jwt = jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return encoded_jwt


def decode_token(token: str) -> TokenData | None:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        email: str = payload.get("sub")
        if email is None or payload.get("purpose") != ACCESS_TOKEN_PURPOSE:
            return None
        return TokenData(email=email)
    except jwt.PyJWTError:
        return None


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == normalize_email(email)).first()


def create_user(
    db: Session,
    email: str,
    password: str,
    role: str = "parishioner",
    full_name: str | None = None,
) -> User:
    hashed_password = get_password_hash(password)
    user = User(
        email=normalize_email(email),
        password_hash=hashed_password,
        role=role,
        full_name=full_name,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
