"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file by default) and provides the
helpers used by the application, the import script and tests.
"""

from sqlmodel import SQLModel, create_engine, Session

from .config import settings

_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(settings.DATABASE_URL, echo=False, connect_args=_connect_args)


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    Idempotent; safe to call on every startup for the SQLite deployment.
    """
    # models must be imported so their tables are registered on the metadata
    from . import models  # noqa: F401
    SQLModel.metadata.create_all(engine)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session


def session_factory() -> Session:
    """New session bound to the application engine (background jobs, scripts)."""
    return Session(engine)
