"""SQLAlchemy engine & read-only connections.

Single shared engine for the configured SQLite database.  Every KPI query
runs through `readonly_connection`, which switches the connection to
``PRAGMA query_only`` before anything is executed.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine

from kpichat.core.config import get_settings
from kpichat.core.logging import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None


def create_sqlite_engine(url: str) -> Engine:
    """Build an engine whose DBAPI connections may be shared across worker threads."""
    return create_engine(url, connect_args={"check_same_thread": False}, echo=False)


def get_engine() -> Engine:
    """Return the shared SQLAlchemy engine (lazy-created, cached)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_sqlite_engine(settings.database_url)
        logger.info("DB engine created  url=%s", settings.database_url)
    return _engine


@contextmanager
def readonly_connection(engine: Engine | None = None) -> Generator[Connection, None, None]:
    """Yield a connection in query-only mode.

    Writes fail inside the block even if the SQL is malicious.  The flag is
    cleared again before the connection goes back to the pool.
    """
    engine = engine or get_engine()
    conn = engine.connect()
    try:
        conn.exec_driver_sql("PRAGMA query_only = ON")
        yield conn
    finally:
        try:
            conn.rollback()
            conn.exec_driver_sql("PRAGMA query_only = OFF")
        finally:
            conn.close()
