"""Database configuration and base setup for Bounty Triage."""

import os
from contextlib import contextmanager
from typing import Any, Dict, Generator, Iterator, Optional, Sequence, Type

from fastapi import Request
from sqlalchemy import Engine, create_engine, insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# Default to a local SQLite database when DATABASE_URL is not provided.
DEFAULT_DATABASE_URL = "sqlite:///./bounty_triage.db"


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


def create_db_engine(database_url: str) -> Engine:
    """Create an engine configured for the target backend."""
    if database_url.startswith("sqlite"):
        if make_url(database_url).database in (None, "", ":memory:"):
            # In-memory SQLite: every session must share the one connection
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

    # PostgreSQL configuration for production
    return create_engine(
        database_url,
        pool_size=20,
        max_overflow=30,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


class Database:
    """Owns the engine and session factory for one process (or one test).

    Opened at process start, passed to whatever needs storage, and disposed
    at shutdown.

    Usage:
        database = Database.from_url("sqlite:///./bounty_triage.db")
        database.create_all()
        with database.session() as db:
            ...
        database.dispose()
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self.session_factory = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
        )

    @classmethod
    def from_url(cls, raw_url: Optional[str] = None) -> "Database":
        return cls(create_db_engine(get_database_url(raw_url)))

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session that is always closed afterwards."""
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        # Import all models to ensure they're registered with Base
        from . import audit_models, models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        """Drop all database tables. Use with caution!"""
        from . import audit_models, models  # noqa: F401

        Base.metadata.drop_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


def get_database(request: Request) -> Database:
    """Dependency returning the Database opened by the application lifespan."""
    return request.app.state.database


def get_db(request: Request) -> Generator[Session, None, None]:
    """Dependency to get database session."""
    with get_database(request).session() as db:
        yield db


def insert_or_ignore(
    db: Session, model: Type[Base], values: Dict[str, Any], key: Sequence[str]
) -> bool:
    """Insert one row unless a row with the same ``key`` columns exists.

    Uses ``INSERT ... ON CONFLICT DO NOTHING`` on SQLite and PostgreSQL so
    two writers racing on the same key cannot both insert.

    Returns:
        True if this call inserted the row
    """
    dialect = db.get_bind().dialect.name

    if dialect == "sqlite":
        stmt = sqlite_insert(model).values(**values).on_conflict_do_nothing(
            index_elements=list(key)
        )
    elif dialect == "postgresql":
        stmt = pg_insert(model).values(**values).on_conflict_do_nothing(
            index_elements=list(key)
        )
    else:
        filters = [getattr(model, column) == values[column] for column in key]
        if db.query(model).filter(*filters).first() is not None:
            return False
        db.execute(insert(model).values(**values))
        return True

    return db.execute(stmt).rowcount == 1
