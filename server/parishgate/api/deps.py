from collections.abc import Generator
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from parishgate.core.config import get_settings
from parishgate.core.lockout import LockoutPolicy
from parishgate.db.session import SessionLocal
from parishgate.models.user import User, UserRole
from parishgate.services.auth import decode_token, get_user_by_email
from parishgate.services.document_store import DocumentStore, SqlDocumentStore
from parishgate.services.identity import IdentityProvider, LocalIdentityProvider
from parishgate.services.lockout import AttemptRecorder
from parishgate.services.login import LoginService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@lru_cache
def get_document_store() -> DocumentStore:
    settings = get_settings()
    return SqlDocumentStore(SessionLocal, max_retries=settings.store_transaction_retries)


def get_attempt_recorder(store: DocumentStore = Depends(get_document_store)) -> AttemptRecorder:
    return AttemptRecorder(store, LockoutPolicy.from_settings(get_settings()))


def get_identity_provider(db: Session = Depends(get_db)) -> IdentityProvider:
    return LocalIdentityProvider(db)


def get_login_service(
    recorder: AttemptRecorder = Depends(get_attempt_recorder),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> LoginService:
    return LoginService(recorder, identity)


def get_current_user(db: Session = Depends(get_db), token: str = Depends(oauth2_scheme)) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    token_data = decode_token(token)
    if token_data is None or token_data.email is None:
        raise credentials_exception
    user = get_user_by_email(db, token_data.email)
    if user is None:
        raise credentials_exception
    if not user.is_active:
        raise HTTPException(status_code=400, detail="Inactive user")
    return user


def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    """Only allow admin users."""
    if current_user.role != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user
