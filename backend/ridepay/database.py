"""
Database engine, session factory, and metadata shared across the service.
"""

from __future__ import annotations

import logging
from typing import Any, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker

from ridepay.core.config import settings

logger = logging.getLogger(__name__)

_DEFAULT_POOL_KWARGS: dict[str, Any] = {
    "pool_pre_ping": True,
    "pool_recycle": 300,
    "future": True,
}


def build_engine(url: str) -> Engine:
    """Create an engine for ``url``; SQLite gets the thread-sharing flag the scheduler needs."""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, future=True)
    return create_engine(url, **_DEFAULT_POOL_KWARGS)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


Base: DeclarativeMeta = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    """Create all tables for the registered models (dev and test convenience)."""
    import ridepay.models  # noqa: F401

    target = bind or engine
    Base.metadata.create_all(bind=target)
    logger.info("Initialized database schema on %s", target.url.render_as_string(hide_password=True))


__all__ = ["Base", "SessionLocal", "build_engine", "engine", "get_db", "init_db"]
