"""Database engine builder.

- Default pool: QueuePool with pool_pre_ping for PostgreSQL
- DATACOP_DB_POOL=nullpool for transaction-mode poolers (PgBouncer, Supabase)
- SQLite URLs (tests, local tooling) get check_same_thread=False and, for
  in-memory databases, a StaticPool so every session sees the same schema
"""

import logging
import os
import re
from typing import Any

from sqlalchemy import Engine, NullPool, StaticPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)


def _mask_password(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r"://([^:]+):([^@]+)@", r"://\1:***@", url)


def build_engine(database_url: str) -> Engine:
    """Build SQLAlchemy engine.

    Args:
        database_url: Database URL

    Returns:
        SQLAlchemy Engine instance

    Raises:
        ValueError: If database_url is empty or DATACOP_DB_POOL is invalid

    Environment Variables:
        DATACOP_DB_POOL: "queuepool" (default) | "nullpool"
        DATACOP_DB_POOL_SIZE: QueuePool size (default: 5)
        DATACOP_DB_MAX_OVERFLOW: QueuePool overflow (default: 10)
    """
    if not database_url:
        raise ValueError("database_url is required to build an engine.")

    if database_url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    connect_args: dict[str, Any] = {}
    app_name = os.getenv("DATACOP_DB_APPLICATION_NAME", "datacop-api")
    if app_name:
        connect_args["application_name"] = app_name

    pool_mode = os.getenv("DATACOP_DB_POOL", "queuepool").lower()

    if pool_mode == "nullpool":
        engine = create_engine(
            database_url,
            poolclass=NullPool,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
    elif pool_mode == "queuepool":
        engine = create_engine(
            database_url,
            pool_pre_ping=True,
            pool_size=int(os.getenv("DATACOP_DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DATACOP_DB_MAX_OVERFLOW", "10")),
            connect_args=connect_args,
        )
    else:
        raise ValueError(
            f"Invalid DATACOP_DB_POOL value: {pool_mode}. "
            "Must be 'nullpool' or 'queuepool'."
        )

    logger.debug(
        "Database engine created: pool=%s, url=%s",
        engine.pool.__class__.__name__,
        _mask_password(database_url),
    )
    return engine


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    """Build SQLAlchemy sessionmaker.

    Sessions are short-lived: one per transaction attempt.
    expire_on_commit=False lets services return ORM objects after commit.
    """
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
