"""
Pytest configuration and shared fixtures.

Test environment defaults are set here before any app import, so settings
are built from them. Variables already exported in the shell win.
"""

import os

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_messagely.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("BCRYPT_WORK_FACTOR", "4")
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Clear settings cache before any app imports to ensure test env vars are used
from messagely.config import get_settings  # noqa: E402
get_settings.cache_clear()

from fastapi.testclient import TestClient  # noqa: E402

from messagely.main import app  # noqa: E402
from messagely.storage import Base, SessionLocal, engine  # noqa: E402


ALICE = {
    "username": "alice",
    "password": "secret1",
    "first_name": "A",
    "last_name": "L",
    "phone": "555",
}

BOB = {
    "username": "bob",
    "password": "secret2",
    "first_name": "Bob",
    "last_name": "Builder",
    "phone": "556",
}


def register(client, **fields):
    """Register a user via the API and return the response."""
    return client.post("/auth/register", json=fields)


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    # Cleanup - drop all tables after test
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(client):
    """A session on the test database, for checking rows directly."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def alice_token(client) -> str:
    response = register(client, **ALICE)
    assert response.status_code == 200
    return response.json()["token"]


@pytest.fixture
def bob_token(client) -> str:
    response = register(client, **BOB)
    assert response.status_code == 200
    return response.json()["token"]
