"""
Shared pytest fixtures for API tests.

Each test gets the per-test temp-file database from the root conftest
(session_factory) and its own blob store; both are wired into the app
through dependency overrides.
"""
import pytest
from fastapi.testclient import TestClient

from main import app
from app.core.database import get_db
from app.services.blob_store import get_blob_store


@pytest.fixture(scope="function")
def api_client(session_factory, blob_store):
    """
    Create an API test client with proper database isolation.

    This fixture:
    1. Overrides get_db to use the test database
    2. Overrides get_blob_store to use the per-test blob root
    3. Provides a TestClient
    4. Removes the overrides afterwards
    """

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store

    client = TestClient(app)

    yield client

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_blob_store, None)
