"""Database engine, session factory and declarative base"""
import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from app.core.config import settings

engine_kwargs = {
    "echo": settings.DEBUG,  # Log SQL queries in debug mode
}

# SQLite requires check_same_thread=False because the template worker and
# request handlers share the engine
if settings.DATABASE_URL.startswith("sqlite"):
    engine_kwargs["connect_args"] = {"check_same_thread": False}
    _sqlite_path = settings.DATABASE_URL.replace("sqlite:///", "", 1)
    if _sqlite_path and _sqlite_path != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(_sqlite_path)), exist_ok=True)

engine = create_engine(settings.DATABASE_URL, **engine_kwargs)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency for FastAPI routes to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session(session_factory=None) -> Generator[Session, None, None]:
    """
    Context manager for database sessions outside of a request.

    Used by the template worker, which has no FastAPI dependency injection.
    Rolls back on exception and always closes the session.

    Args:
        session_factory: Optional sessionmaker (tests pass their own)
    """
    db = (session_factory or SessionLocal)()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
