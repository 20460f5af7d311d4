"""
Database configuration and session management for the Bookstores service.

This module sets up the database connection using SQLAlchemy and provides
a session factory for plain reads/writes plus a transactional unit of work
for operations that must read, check and write atomically.
"""
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from . import config

Base = declarative_base()


def _enable_sqlite_locking(engine: Engine) -> None:
    """
    Make SQLite behave like a row-locking store for local runs and tests.

    pysqlite's own transaction handling is switched off so that SQLAlchemy
    emits BEGIN IMMEDIATE; conflicting writers then wait on the busy timeout
    instead of reading stale rows. Foreign keys are off by default in SQLite.
    """
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, pool_size: int = config.DB_MAX_CONNS) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.

    Args:
        url: Database URL (postgresql://... in production, sqlite:///... locally)
        pool_size: Maximum number of pooled connections (ignored for SQLite)

    Returns:
        Configured Engine
    """
    if url.startswith("sqlite"):
        engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
        _enable_sqlite_locking(engine)
        return engine
    return create_engine(url, pool_size=pool_size, pool_pre_ping=True)


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = build_engine(config.DATABASE_URL)
SessionLocal = make_session_factory(engine)


def get_db() -> Iterator[Session]:
    """
    Dependency function that provides a database session.

    Yields:
        Session: SQLAlchemy database session

    Usage:
        Use as a FastAPI dependency to inject database sessions into route handlers.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(session_factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """
    Transactional scope around a series of operations.

    Commits when the block exits normally and rolls back on every other exit
    path, including exceptions raised by the caller's own checks. The session
    is always closed and its connection returned to the pool.

    Args:
        session_factory: Session factory to draw from (defaults to SessionLocal)

    Yields:
        Session: session bound to a single open transaction
    """
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()
