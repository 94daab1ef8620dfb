"""
Database configuration and session management.

The canonical team/game store is owned elsewhere; this package only reads
from it, so sessions are opened for queries and never commit.
"""
import os
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, Session

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def _connect_args(database_url: str, connect_timeout: int) -> dict:
    """Driver-specific connect arguments carrying the connect timeout."""
    backend = make_url(database_url).get_backend_name()
    if backend == "sqlite":
        return {"timeout": connect_timeout, "check_same_thread": False}
    if backend == "postgresql":
        return {"connect_timeout": connect_timeout}
    return {}


def create_store_engine(database_url: str, connect_timeout: int = 10, pool_timeout: int = 15) -> Engine:
    """Create an engine for the canonical store with conservative timeouts."""
    kwargs = {
        "pool_pre_ping": True,  # Verify connections before using
        "connect_args": _connect_args(database_url, connect_timeout),
        "echo": os.getenv("SQL_ECHO", "false").lower() == "true",
    }
    if make_url(database_url).get_backend_name() != "sqlite":
        kwargs.update(pool_size=10, max_overflow=20, pool_timeout=pool_timeout)
    return create_engine(database_url, **kwargs)


def get_engine() -> Engine:
    """Get or create the database engine."""
    global _engine, _SessionLocal

    if _engine is None:
        from cfb_reconcile.core.config import settings
        _engine = create_store_engine(
            settings.DATABASE_URL,
            connect_timeout=settings.DB_CONNECT_TIMEOUT,
            pool_timeout=settings.DB_POOL_TIMEOUT,
        )
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)

    return _engine


def get_session_factory() -> sessionmaker:
    """Session factory bound to the configured engine."""
    get_engine()
    return _SessionLocal


def get_db() -> Generator[Session, None, None]:
    """
    Provide a database session and close it afterwards.

    Usage:
    ```python
    with contextlib.contextmanager(get_db)() as db:
        ...
    ```
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()
