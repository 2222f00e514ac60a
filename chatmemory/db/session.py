from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from chatmemory.config.settings import settings

# Lazy initialization to avoid import-time database connections
_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def _is_postgresql(database_url: str) -> bool:
    lowered = database_url.lower()
    return "postgresql" in lowered or "postgres" in lowered


def _get_engine() -> Engine:
    """Get or create the database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        database_url = settings.database_url
        connect_args: dict[str, object] = {}
        if "sqlite" in database_url.lower():
            connect_args = {"check_same_thread": False}
            logger.warning("Using SQLite database (local development only)")
        elif _is_postgresql(database_url):
            connect_args = {
                "connect_timeout": 10,
                "application_name": "chatmemory",
            }

        _engine = create_engine(
            database_url,
            connect_args=connect_args,
            echo=False,
            pool_pre_ping=True,  # Verify connections before using (important for cloud DBs)
            pool_recycle=3600,
        )
        logger.info("Database engine initialized")
    return _engine


def _get_session_local() -> sessionmaker[Session]:
    """Get or create the session factory (lazy initialization)."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_get_engine())
        logger.info("Database session factory initialized")
    return _SessionLocal


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get database session context manager.

    Commits on success when the session holds changes. Any exception rolls
    the session back and is re-raised to the caller.
    """
    session = _get_session_local()()
    try:
        yield session
        if session.dirty or session.new or session.deleted:
            session.commit()
    except Exception:
        logger.debug("Exception in database session, rolling back")
        session.rollback()
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create all tables that do not exist yet."""
    from chatmemory.db.models import Base

    Base.metadata.create_all(bind=_get_engine())
    logger.info("Database tables ensured")
