"""Database configuration and base setup for the Work Item Tracker."""

import os
from contextlib import contextmanager
from typing import Generator, Iterator, Optional

import structlog
from sqlalchemy import Engine, create_engine, text
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..cancellation import CancellationToken, Deadline

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# Default to a local SQLite database when DATABASE_URL is not provided.
DEFAULT_DATABASE_URL = "sqlite:///./work_item_tracker.db"


def _ensure_sync_driver(url: URL) -> URL:
    """Force a synchronous driver for Alembic and the ORM engine."""

    if url.drivername.startswith("postgresql+"):
        # Normalize any async driver variants to psycopg (sync)
        if any(token in url.drivername for token in ("async", "aiopg")):
            url = url.set(drivername="postgresql+psycopg")
    elif url.drivername.startswith("sqlite+"):
        if "aiosqlite" in url.drivername:
            url = url.set(drivername="sqlite")

    return url


def get_database_url(raw_url: Optional[str] = None) -> str:
    """Return a database URL with a guaranteed synchronous driver."""

    url = make_url(raw_url or os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL)
    # render_as_string keeps the password; str(url) would mask it
    return _ensure_sync_driver(url).render_as_string(hide_password=False)


def create_database_engine(raw_url: Optional[str] = None) -> Engine:
    """Create an engine configured for the target database."""
    database_url = get_database_url(raw_url)

    if database_url.startswith("sqlite"):
        # SQLite configuration for development/testing
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    # PostgreSQL configuration for production
    return create_engine(
        database_url,
        pool_size=20,
        max_overflow=30,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """
    Create and cache the database engine.

    Lazy so that environment variables are read at runtime, not at import time.
    """
    global _engine
    if _engine is None:
        from ..config import get_settings

        _engine = create_database_engine(get_settings().database_url)
    return _engine


def get_session_local() -> sessionmaker:
    """Get a sessionmaker bound to the current engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def get_db() -> Generator[Session, None, None]:
    """Dependency to get database session."""
    session_local = get_session_local()
    db = session_local()
    try:
        yield db
    finally:
        db.close()


def init_database(engine: Optional[Engine] = None) -> None:
    """Create all tables and seed the system work item types."""
    # Import all models to ensure they're registered with Base
    from . import models  # noqa: F401
    from ..workitem.system_types import seed_system_types

    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    with Session(engine) as db:
        seed_system_types(db)
        db.commit()
    logger.info("Database initialized")


def drop_database(engine: Optional[Engine] = None) -> None:
    """Drop all database tables. Use with caution!"""
    from . import models  # noqa: F401

    Base.metadata.drop_all(bind=engine or get_engine())
    logger.warning("Database tables dropped")


# =============================================================================
# Transaction boundary
# =============================================================================

_TRANSACTION_KEY = "work_item_tracker.transaction"


class Transaction:
    """An open store transaction.

    Store operations call :meth:`checkpoint` between steps so that a
    cancellation or an expired deadline aborts the work before the commit.
    """

    def __init__(
        self,
        db: Session,
        deadline: Deadline,
        cancel: Optional[CancellationToken] = None,
    ):
        self.db = db
        self.deadline = deadline
        self.cancel = cancel

    def checkpoint(self) -> None:
        if self.cancel is not None:
            self.cancel.check()
        self.deadline.check()


@contextmanager
def transactional(
    db: Session,
    timeout_seconds: float,
    cancel: Optional[CancellationToken] = None,
) -> Iterator[Transaction]:
    """Run the enclosed block as one transaction.

    Commits when the block completes and rolls back on any exception,
    including cancellation. Nested uses join the outermost transaction.
    """
    current = db.info.get(_TRANSACTION_KEY)
    if current is not None:
        if cancel is not None:
            cancel.check()
        current.checkpoint()
        yield current
        return

    tx = Transaction(db, Deadline(timeout_seconds), cancel)
    db.info[_TRANSACTION_KEY] = tx
    try:
        tx.checkpoint()
        _apply_statement_timeout(db, tx.deadline)
        yield tx
        tx.checkpoint()
        db.commit()
    except BaseException:
        db.rollback()
        raise
    finally:
        db.info.pop(_TRANSACTION_KEY, None)


def _apply_statement_timeout(db: Session, deadline: Deadline) -> None:
    """Bound server-side statement time on PostgreSQL."""
    if db.get_bind().dialect.name != "postgresql":
        return
    milliseconds = max(1, int(deadline.remaining * 1000))
    db.execute(text(f"SET LOCAL statement_timeout = {milliseconds}"))
