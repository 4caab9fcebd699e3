"""
Shared fixtures.

Config validates its env vars at import time, so they are set here before
anything from tubedigest is imported. Each test gets freshly created tables
in a throwaway SQLite file.
"""
import os
import tempfile
from pathlib import Path

_TMP_DIR = Path(tempfile.mkdtemp(prefix="tubedigest-tests-"))

os.environ.setdefault("ENV", "test")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("GOOGLE_REDIRECT_URI", "http://testserver/auth/google/callback")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("TOKEN_ENC_KEY", "11" * 32)
os.environ.setdefault("FRONTEND_URL", "http://localhost:3000")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR / 'test.db'}"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from tubedigest.config import JWT_COOKIE_NAME  # noqa: E402
from tubedigest.database import Base, SessionLocal, engine, init_db  # noqa: E402
from tubedigest.models import User  # noqa: E402
from tubedigest.security import create_session_token  # noqa: E402


@pytest.fixture(autouse=True)
def _tables():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def user(db):
    u = User(email="viewer@example.com", name="Viewer")
    db.add(u)
    db.commit()
    return u


@pytest.fixture
def app():
    from tubedigest.main import app as fastapi_app

    return fastapi_app


@pytest.fixture
def anon_client(app):
    return TestClient(app)


@pytest.fixture
def client(app, user):
    """TestClient carrying a valid session cookie for `user`."""
    return TestClient(app, cookies={JWT_COOKIE_NAME: create_session_token(user.id, user.email)})
