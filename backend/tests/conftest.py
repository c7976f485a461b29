"""Pytest fixtures and configuration for test suite

This module provides:
1. Environment isolation (temp database, temp blob root, worker disabled)
2. Database session fixtures for test isolation
3. Factory functions for creating test objects with sensible defaults
4. Pytest fixtures that use the factory functions

Factory Functions:
    - make_user(**overrides) -> User
    - make_project(**overrides) -> Project
    - make_task(**overrides) -> Task
    - make_milestone(**overrides) -> TaskMilestone
    - make_group(**overrides) -> Group
    - make_offline_event(**overrides) -> OfflineEvent

Each factory accepts an optional db_session parameter to persist objects.
"""
import os
import tempfile

# Must be set before app modules read settings
_TEST_DIR = tempfile.mkdtemp(prefix="smartops-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TEST_DIR, 'app.db')}")
os.environ.setdefault("BLOB_STORAGE_DIR", os.path.join(_TEST_DIR, "blobs"))
os.environ.setdefault("BIOMETRIC_WORKER_ENABLED", "false")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-unit-tests-only")

import json
import uuid
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.database import Base
from app.models.group import Group
from app.models.offline_event import OfflineEvent
from app.models.project import Project
from app.models.task import Task, TaskMilestone
from app.models.user import User, UserRole
from app.services.blob_store import FilesystemBlobStore, OFFLINE_NAMESPACE
from app.utils.jwt import create_access_token


TENANT_ID = "tenant-001"
OTHER_TENANT_ID = "tenant-002"


# =============================================================================
# Factory Functions for Test Objects
# =============================================================================

def make_user(
    db_session=None,
    id: str = None,
    tenant_id: str = TENANT_ID,
    username: str = None,
    role: UserRole = UserRole.WORKER,
    is_active: bool = True,
    **overrides
) -> User:
    """
    Factory function to create User instances for testing.

    Args:
        db_session: Optional SQLAlchemy session. If provided, adds and commits the user.
        id: UUID string. If None, generates a new UUID.
        tenant_id: Owning tenant.
        username: Login name. If None, derived from the id.
        role: UserRole.
        is_active: Whether the account is enabled.
        **overrides: Any additional User model fields.

    Returns:
        User instance (persisted if db_session provided).

    Example:
        manager = make_user(db_session=session, role=UserRole.MANAGER)
    """
    if id is None:
        id = str(uuid.uuid4())
    if username is None:
        username = f"user-{id[:8]}"

    user = User(
        id=id,
        tenant_id=tenant_id,
        username=username,
        role=role,
        is_active=is_active,
        **overrides
    )

    if db_session:
        db_session.add(user)
        db_session.commit()

    return user


def make_project(
    db_session=None,
    id: str = None,
    tenant_id: str = TENANT_ID,
    name: str = "Substation upgrade",
    status: str = "active",
    **overrides
) -> Project:
    """Factory function to create Project instances for testing."""
    project = Project(
        id=id or str(uuid.uuid4()),
        tenant_id=tenant_id,
        name=name,
        status=status,
        **overrides
    )

    if db_session:
        db_session.add(project)
        db_session.commit()

    return project


def make_task(
    db_session=None,
    id: str = None,
    tenant_id: str = TENANT_ID,
    project_id: str = None,
    title: str = "Install transformer",
    status: str = "pending",
    **overrides
) -> Task:
    """
    Factory function to create Task instances for testing.

    Args:
        db_session: Optional SQLAlchemy session. If provided, adds and commits the task.
        project_id: Owning project id (may be None).
        status: One of pending, in-progress, paused, completed.
    """
    task = Task(
        id=id or str(uuid.uuid4()),
        tenant_id=tenant_id,
        project_id=project_id,
        title=title,
        status=status,
        **overrides
    )

    if db_session:
        db_session.add(task)
        db_session.commit()

    return task


def make_milestone(
    db_session=None,
    task_id: str = None,
    id: str = None,
    tenant_id: str = TENANT_ID,
    name: str = "Foundations poured",
    status: str = "pending",
    **overrides
) -> TaskMilestone:
    """Factory function to create TaskMilestone instances for testing."""
    milestone = TaskMilestone(
        id=id or str(uuid.uuid4()),
        tenant_id=tenant_id,
        task_id=task_id,
        name=name,
        status=status,
        **overrides
    )

    if db_session:
        db_session.add(milestone)
        db_session.commit()

    return milestone


def make_group(
    db_session=None,
    members: list = None,
    id: str = None,
    tenant_id: str = TENANT_ID,
    name: str = "Crew A",
    **overrides
) -> Group:
    """Factory function to create Group instances with the given member Users."""
    group = Group(
        id=id or str(uuid.uuid4()),
        tenant_id=tenant_id,
        name=name,
        **overrides
    )
    group.members = list(members or [])

    if db_session:
        db_session.add(group)
        db_session.commit()

    return group


def make_offline_event(
    db_session=None,
    event_type: str = "task-update",
    payload: dict = None,
    files: list = None,
    tenant_id: str = TENANT_ID,
    user_id: str = None,
    **overrides
) -> OfflineEvent:
    """Factory function to create OfflineEvent rows (bypassing ingestion)."""
    event = OfflineEvent(
        id=overrides.pop("id", None) or str(uuid.uuid4()),
        tenant_id=tenant_id,
        user_id=user_id,
        event_type=event_type,
        payload=json.dumps(payload or {}),
        uploaded_files=json.dumps(files or []),
        **overrides
    )

    if db_session:
        db_session.add(event)
        db_session.commit()

    return event


def store_offline_file(blob_store, data: bytes, tenant_id: str = TENANT_ID, filename: str = "photo.jpg") -> dict:
    """Put bytes into the offline namespace and return the file descriptor."""
    import io

    info = blob_store.put(
        OFFLINE_NAMESPACE,
        io.BytesIO(data),
        {
            "tenantId": tenant_id,
            "originalFilename": filename,
            "contentType": "image/jpeg",
            "kind": "offline-upload",
        },
    )
    return info.to_descriptor()


def auth_headers(user: User) -> dict:
    """Bearer header for a persisted user."""
    return {"Authorization": f"Bearer {create_access_token(user.id, user.tenant_id, user.role.value)}"}


# =============================================================================
# Database Session Fixtures
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def clear_app_overrides():
    """
    Session-scoped fixture to ensure app.dependency_overrides is cleared
    at the start and end of the test session.

    This prevents state pollution between test modules.
    """
    from main import app

    app.dependency_overrides.clear()

    yield

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def session_factory():
    """
    Create a temp-file SQLite database and return its sessionmaker.

    File-based (not :memory:) so the template worker's threads see the
    same database as the test.
    """
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    try:
        yield factory
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()
        if os.path.exists(path):
            os.remove(path)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """
    SQLAlchemy Session on the per-test database

    Yields:
        SQLAlchemy Session for test database
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def blob_store(tmp_path):
    """FilesystemBlobStore rooted in a per-test temp directory."""
    return FilesystemBlobStore(str(tmp_path / "blobs"), max_bytes=1024 * 1024)


# =============================================================================
# Object Fixtures
# =============================================================================


@pytest.fixture
def worker_user(db_session):
    return make_user(db_session=db_session, username="field-worker", role=UserRole.WORKER)


@pytest.fixture
def manager_user(db_session):
    return make_user(db_session=db_session, username="site-manager", role=UserRole.MANAGER)


@pytest.fixture
def sample_project(db_session):
    return make_project(db_session=db_session)


@pytest.fixture
def sample_task(db_session, sample_project):
    return make_task(db_session=db_session, project_id=sample_project.id)
