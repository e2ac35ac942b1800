"""SQLAlchemy engine and session configuration.

This module builds the engine for the configured database URL, applies
SQLite connection pragmas, and exposes the session factory shared by the
batch writer and run registry.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from core.config import GenvaultConfig
from store.models import Base

# Negative cache size is in KiB (64 MiB).
SQLITE_CACHE_SIZE = -65536


def create_database_engine(config: GenvaultConfig) -> Engine:
    """Create the engine and ensure all tables exist.

    Args:
        config: Runtime config with database URL and SQLite settings.

    Returns:
        Configured SQLAlchemy engine.
    """
    database_url = make_url(config.resolved_database_url)
    if database_url.get_backend_name() != "sqlite":
        engine = create_engine(database_url, pool_pre_ping=True)
        Base.metadata.create_all(engine)
        return engine
    if database_url.database and database_url.database != ":memory:":
        Path(database_url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},
        echo=False,
    )
    _register_sqlite_events(engine, config.sqlite_busy_timeout_ms)
    Base.metadata.create_all(engine)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return the session factory used by all store components."""
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def _register_sqlite_events(engine: Engine, busy_timeout_ms: int) -> None:
    """Apply pragmas and explicit transaction control for SQLite.

    The driver's implicit transaction handling is disabled so SAVEPOINTs
    nest correctly, and every transaction starts with BEGIN IMMEDIATE so
    concurrent writers wait on the busy timeout instead of failing.
    """

    def _set_sqlite_pragmas(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.execute("PRAGMA synchronous = NORMAL")
        cursor.execute(f"PRAGMA cache_size = {SQLITE_CACHE_SIZE}")
        cursor.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
        cursor.close()

    def _begin_immediate(connection: Any) -> None:
        connection.exec_driver_sql("BEGIN IMMEDIATE")

    event.listen(engine, "connect", _set_sqlite_pragmas)
    event.listen(engine, "begin", _begin_immediate)
