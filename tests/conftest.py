"""Pytest configuration and fixtures."""

import os
import shutil
import tempfile
from datetime import UTC, datetime, timedelta

import pytest

# Use test database - PostgreSQL when DATABASE_URL is set, SQLite locally
if os.getenv("DATABASE_URL"):
    SQLALCHEMY_DATABASE_URL = os.environ["DATABASE_URL"].replace(
        "/marketplace", "/marketplace_test"
    )
else:
    SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"

UPLOAD_ROOT = tempfile.mkdtemp(prefix="marketplace-uploads-")

# Settings are read when the app module is imported
os.environ["DATABASE_URL"] = SQLALCHEMY_DATABASE_URL
os.environ["UPLOAD_DIR"] = UPLOAD_ROOT
os.environ["BASE_URL"] = "http://testserver"
os.environ["ASSET_BACKEND"] = "local"
os.environ["ENVIRONMENT"] = "test"

from fastapi.testclient import TestClient  # noqa: E402

from marketplace.api.dependencies import get_db  # noqa: E402
from marketplace.database import Base, Database  # noqa: E402
from marketplace.main import app  # noqa: E402
from marketplace.services.assets import LocalAssetStore  # noqa: E402
from marketplace.services.auth import TokenClaims  # noqa: E402

database = Database(SQLALCHEMY_DATABASE_URL)


class AuthHeaders(dict):
    """Dict subclass that also stores the identity behind the token."""

    def __init__(self, *args, user_id: int | None = None, email: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.user_id = user_id
        self.email = email


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create test database schema once at the start of the test session."""
    if "postgresql" in SQLALCHEMY_DATABASE_URL:
        from sqlalchemy_utils import create_database, database_exists

        # Create test database if it doesn't exist
        if not database_exists(SQLALCHEMY_DATABASE_URL):
            create_database(SQLALCHEMY_DATABASE_URL)

    database.create_all()
    yield
    database.dispose()
    shutil.rmtree(UPLOAD_ROOT, ignore_errors=True)


@pytest.fixture(scope="function", autouse=True)
def db():
    """Create a fresh database session for each test with cleanup."""
    session = database.session_factory()

    yield session

    # Clean up all data after test
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.close()


@pytest.fixture
def asset_store():
    """The app's local asset store, emptied after each test."""
    store: LocalAssetStore = app.state.asset_store
    yield store
    images = store.root / "images"
    for path in images.iterdir():
        path.unlink()


@pytest.fixture(scope="function")
def client(db, asset_store):
    """Create a test client with database override."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def register(client, name: str, email: str, password: str = "testpass123") -> AuthHeaders:
    response = client.post(
        "/api/signup",
        json={"name": name, "email": email, "password": password},
    )
    assert response.status_code == 201
    data = response.json()
    return AuthHeaders(
        {"Authorization": f"Bearer {data['token']}"},
        user_id=data["user"]["id"],
        email=data["user"]["email"],
    )


@pytest.fixture
def auth_headers(client):
    """Create a user and return auth headers with user info."""
    return register(client, "Test User", "test@example.com")


@pytest.fixture
def other_headers(client):
    """A second, unrelated user."""
    return register(client, "Other User", "other@example.com")


def identity_for(user) -> TokenClaims:
    """Build the claims a service call would receive from the access gate."""
    now = datetime.now(UTC)
    return TokenClaims(
        id=user.id,
        name=user.name,
        email=user.email,
        issued_at=now,
        expires_at=now + timedelta(hours=1),
    )


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64

DESK = {
    "title": "Desk",
    "price": "1500",
    "category": "Furniture",
    "description": "Wooden desk",
    "contact_number": "254712345678",
    "location": "Hostel B",
}
