"""
Engine and session handling for the ValueWatch store.

Request handlers get a session per request through get_db(); batch jobs
open one long-lived session with session_scope(). Every service method
commits its own record, so neither helper commits on exit.
"""
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from valuewatch.config import DATABASE_URL, SQL_ECHO

IS_SQLITE = DATABASE_URL.startswith("sqlite")

engine = create_engine(
    DATABASE_URL,
    # FastAPI may hand a session to a different worker thread
    connect_args={"check_same_thread": False} if IS_SQLITE else {},
    echo=SQL_ECHO,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def enable_sqlite_foreign_keys(target_engine) -> None:
    """Make SQLite reject holding and result rows that point at a missing stock."""

    @event.listens_for(target_engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


if IS_SQLITE:
    enable_sqlite_foreign_keys(engine)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, always closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Session for a batch job.

    Work left uncommitted by a failure is rolled back before the session
    is closed.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """Create the stocks, institutional_holdings and quarter_results tables if missing."""
    from valuewatch.db.models import Base
    Base.metadata.create_all(bind=engine)
