"""
Database connection management for Cadence.

Engines and session factories are cached per database URL so the
daemon, the CLI commands and the tests can each point at their own
database without stepping on a single process-wide engine.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from cadence_cli.config import get_config, CadenceConfig

logger = logging.getLogger(__name__)

_engines: Dict[str, Engine] = {}
_session_makers: Dict[str, sessionmaker] = {}


def get_db_path(config: Optional[CadenceConfig] = None) -> Optional[Path]:
    """
    Get the SQLite database file path.

    Args:
        config: Cadence configuration (uses global if not provided)

    Returns:
        Path to the SQLite file, or None for in-memory/non-SQLite URLs
    """
    if config is None:
        config = get_config()

    db_url = config.database_url
    if db_url.startswith("sqlite:///") and db_url != "sqlite:///:memory:":
        return Path(db_url[10:])
    return None


def init_engine(database_url: Optional[str] = None) -> Engine:
    """
    Initialize (or reuse) the SQLAlchemy engine for a database URL.

    Args:
        database_url: SQLAlchemy URL (uses the global config if not provided)

    Returns:
        Configured SQLAlchemy engine
    """
    if database_url is None:
        database_url = get_config().database_url

    if database_url in _engines:
        return _engines[database_url]

    if database_url.startswith("sqlite"):
        in_memory = database_url in ("sqlite://", "sqlite:///:memory:")
        if not in_memory:
            Path(database_url[10:]).parent.mkdir(parents=True, exist_ok=True)

        engine_kwargs = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 30,
            },
            "echo": False,
        }
        if in_memory:
            # In-memory databases live as long as their single connection
            engine_kwargs["poolclass"] = StaticPool

        engine = create_engine(database_url, **engine_kwargs)

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """Enable foreign keys and WAL so the CLI can write while the daemon runs."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if not in_memory:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()
    else:
        engine = create_engine(database_url, pool_pre_ping=True, pool_recycle=3600)

    _engines[database_url] = engine
    logger.debug(f"Database engine initialized: {database_url}")
    return engine


def get_session_maker(database_url: Optional[str] = None) -> sessionmaker:
    """
    Get or create the session maker for a database URL.

    Args:
        database_url: SQLAlchemy URL (uses the global config if not provided)

    Returns:
        Configured session maker
    """
    engine = init_engine(database_url)
    key = str(engine.url)

    if key not in _session_makers:
        _session_makers[key] = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=engine,
        )
    return _session_makers[key]


@contextmanager
def get_db_session(database_url: Optional[str] = None) -> Generator[Session, None, None]:
    """
    Get a database session context manager.

    Usage:
        with get_db_session(url) as session:
            message = session.get(MessageRecord, 1)

    Commits on success, rolls back on any exception.

    Args:
        database_url: SQLAlchemy URL (uses the global config if not provided)

    Yields:
        SQLAlchemy Session
    """
    SessionLocal = get_session_maker(database_url)
    session = SessionLocal()

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_tables(database_url: Optional[str] = None) -> None:
    """Create all database tables that do not exist yet."""
    from cadence_cli.database.models import Base

    engine = init_engine(database_url)
    Base.metadata.create_all(bind=engine)
    logger.debug("Database tables created")


def dispose_engine(database_url: str) -> None:
    """Close pooled connections and forget the cached engine for a URL."""
    engine = _engines.pop(database_url, None)
    if engine is None:
        return
    _session_makers.pop(str(engine.url), None)
    engine.dispose()
