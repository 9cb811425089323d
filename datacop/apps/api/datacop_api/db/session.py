"""Database session management.

The engine is built lazily from DATABASE_URL so importing the API never
opens a connection (tests swap the session factory through FastAPI
dependency overrides).
"""

from functools import lru_cache
from typing import Callable, Generator

from fastapi import Depends
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from datacop_api.config.env import get_database_url
from datacop_api.db.engine import build_engine, build_sessionmaker

SessionFactory = Callable[[], Session]


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Return the process-wide engine."""
    return build_engine(get_database_url())


@lru_cache(maxsize=1)
def _session_local() -> SessionFactory:
    return build_sessionmaker(get_engine())


def get_session_factory() -> SessionFactory:
    """FastAPI dependency: factory producing one short-lived session per transaction attempt."""
    return _session_local()


def get_db(session_factory: SessionFactory = Depends(get_session_factory)) -> Generator[Session, None, None]:
    """
    Get database session from the (overridable) session factory.

    Yields:
        Session: SQLAlchemy session
    """
    db = session_factory()
    try:
        yield db
    finally:
        db.close()
