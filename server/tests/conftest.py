"""Pytest configuration and fixtures for Parish Gate tests."""

from collections.abc import Generator

import pyotp
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from parishgate.api.deps import get_db, get_document_store
from parishgate.main import app
from parishgate.models.base import Base
from parishgate.models.user import User
from parishgate.services.auth import get_password_hash
from parishgate.services.document_store import SqlDocumentStore

# Use SQLite in-memory for tests (fast, isolated)
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db: Session) -> SqlDocumentStore:
    """Document store on the same in-memory database as ``db``."""
    return SqlDocumentStore(TestingSessionLocal)


@pytest.fixture
def db_sessions(db: Session) -> sessionmaker:
    """Session factory for code that opens its own sessions on the test database."""
    return TestingSessionLocal


@pytest.fixture
def session_factory(tmp_path):
    """File-backed SQLite so separate sessions see each other's commits."""
    file_engine = create_engine(f"sqlite:///{tmp_path / 'documents.db'}")
    Base.metadata.create_all(bind=file_engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    yield factory
    file_engine.dispose()


@pytest.fixture
def file_store(session_factory) -> SqlDocumentStore:
    return SqlDocumentStore(session_factory)


@pytest.fixture(scope="function")
def client(db: Session, store: SqlDocumentStore) -> Generator[TestClient, None, None]:
    """Create a test client with database and document store overrides."""

    def override_get_db():
        try:
            yield db
        finally:
            pass  # Don't close the session here, let the db fixture handle it

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_document_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def test_user(db: Session) -> User:
    """Create a parishioner without MFA."""
    user = User(
        email="parishioner@example.org",
        password_hash=get_password_hash("testpassword123"),
        full_name="Test Parishioner",
        role="parishioner",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def mfa_user(db: Session) -> User:
    """Create a parishioner with a TOTP authenticator enrolled."""
    user = User(
        email="mfa@example.org",
        password_hash=get_password_hash("mfapassword123"),
        role="parishioner",
        mfa_secret=pyotp.random_base32(),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin_user(db: Session) -> User:
    """Create an admin test user."""
    user = User(
        email="admin@example.org",
        password_hash=get_password_hash("adminpassword123"),
        role="admin",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin_headers(client: TestClient, admin_user: User) -> dict[str, str]:
    """Get authentication headers for the admin user."""
    response = client.post(
        "/api/auth/login",
        json={"email": "admin@example.org", "password": "adminpassword123"},
    )
    assert response.status_code == 200, f"Login failed: {response.json()}"
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(client: TestClient, test_user: User) -> dict[str, str]:
    """Get authentication headers for the parishioner."""
    response = client.post(
        "/api/auth/login",
        json={"email": "parishioner@example.org", "password": "testpassword123"},
    )
    assert response.status_code == 200, f"Login failed: {response.json()}"
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}
