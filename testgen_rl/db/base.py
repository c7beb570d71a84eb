"""Database configuration and base setup for the audit store."""

import logging
from typing import Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def _ensure_sync_driver(url: URL) -> URL:
    """Force a synchronous driver for the ORM engine."""

    if url.drivername == "sqlite+aiosqlite":
        url = url.set(drivername="sqlite")

    return url


def get_database_url(raw_url: Optional[str] = None) -> str:
    """Return a database URL with a guaranteed synchronous driver."""

    url = make_url(raw_url or get_settings().database_url)
    # render_as_string keeps the password; str(url) would mask it
    return _ensure_sync_driver(url).render_as_string(hide_password=False)


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """Build an engine for ``database_url`` (defaults to the configured URL)."""
    url = get_database_url(database_url)

    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return create_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """
    Create and cache the database engine.

    Lazy so that settings are read at first use rather than at import time.
    """
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


def get_session_local(engine: Optional[Engine] = None) -> sessionmaker:
    """Get a sessionmaker bound to ``engine`` or the cached engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine or get_engine())


def init_database(engine: Optional[Engine] = None) -> None:
    """Create the audit tables if they do not exist."""
    # Import models so they register with Base
    from . import audit_models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())
    logger.info("Database initialized")
