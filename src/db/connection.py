"""Database connection management for the EPCIS relay.

Provides synchronous SQLAlchemy engines and sessions. SQLite is the default
for local runs; any SQLAlchemy URL works in production.

Usage:
    from src.db.connection import create_db_engine, create_session_factory, init_db

    engine = create_db_engine()
    init_db(engine)  # Create tables
    with get_db_context(create_session_factory(engine)) as db:
        ...
"""

import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from src.db.models import Base

DEFAULT_DATABASE_URL = "sqlite:///./epcis_relay.db"


def get_database_url() -> str:
    """Get database URL from environment or use default SQLite.

    Precedence:
    1. DATABASE_URL
    2. sqlite:///./epcis_relay.db
    """
    database_url = os.environ.get("DATABASE_URL", "").strip()
    return database_url or DEFAULT_DATABASE_URL


def create_db_engine(url: str | None = None, echo: bool | None = None) -> Engine:
    """Create an engine with SQLite pragmas installed.

    Args:
        url: SQLAlchemy URL. Defaults to get_database_url().
        echo: Log SQL statements. Defaults to the SQL_ECHO env var.

    Returns:
        Configured Engine.
    """
    url = url or get_database_url()
    if echo is None:
        echo = os.environ.get("SQL_ECHO", "").lower() == "true"

    is_sqlite = url.startswith("sqlite")
    engine = create_engine(
        url,
        connect_args={"check_same_thread": False} if is_sqlite else {},
        echo=echo,
    )

    if is_sqlite:

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
            """Enable foreign keys and WAL so readers do not block the writer."""
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if ":memory:" not in url:
                cursor.execute("PRAGMA journal_mode=WAL;")
                cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.close()

    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Build a session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db_context(
    session_factory: sessionmaker[Session],
) -> Generator[Session, None, None]:
    """Context manager for a session that commits on success.

    Usage:
        with get_db_context(factory) as db:
            record = db.query(DispatchRecord).first()
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind: Engine) -> None:
    """Create all database tables.

    Safe to call multiple times - will not recreate existing tables.
    """
    Base.metadata.create_all(bind=bind)
