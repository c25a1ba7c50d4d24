"""
Database configuration and session management.
Uses SQLAlchemy 2.0 patterns.

The engine is created lazily so importing this module never requires the
database driver; the gateway only touches the store on profile / friendship
lookups.
"""

import os
import threading
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from shared.config.settings import DATABASE_URL

_engine: Engine | None = None
_session_factory: sessionmaker | None = None
_engine_lock = threading.Lock()


def _calculate_pool_size() -> int:
    """
    Calculate pool size based on CPU cores.
    Formula: (2 * CPU cores) + 1, capped at 20.
    """
    cores = os.cpu_count() or 4
    return min(cores * 2 + 1, 20)


def get_engine() -> Engine:
    """Get or create the shared engine."""
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                if DATABASE_URL.startswith("sqlite"):
                    _engine = create_engine(
                        DATABASE_URL,
                        connect_args={"check_same_thread": False},
                    )
                else:
                    _engine = create_engine(
                        DATABASE_URL,
                        pool_pre_ping=True,  # Verify connections before using
                        pool_size=_calculate_pool_size(),
                        max_overflow=10,
                        pool_timeout=30,
                        pool_recycle=1800,  # Recycle connections after 30 minutes
                        connect_args={"connect_timeout": 10},
                        echo=False,
                    )
    return _engine


def get_session_factory() -> sessionmaker:
    """Get or create the session factory bound to the shared engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(),
            autoflush=False,
            autocommit=False,
        )
    return _session_factory


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Context manager for database sessions outside of FastAPI.

    Usage:
        with get_db_context() as db:
            db.execute(select(User)).scalars().all()
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def dispose_engine() -> None:
    """Dispose the shared engine on application shutdown."""
    global _engine, _session_factory
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
        _engine = None
        _session_factory = None
