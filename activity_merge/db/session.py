"""Engine and session plumbing.

The engine is built lazily on first use so importing models or routers
never opens a connection. API handlers receive a session through get_db();
scan chunks and scheduled jobs open their own through get_session().
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from fastapi import HTTPException
from loguru import logger
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from activity_merge.config.settings import settings

_engine: Engine | None = None
_SessionLocal: sessionmaker | None = None


def _is_postgresql(database_url: str) -> bool:
    return database_url.lower().startswith(("postgresql", "postgres"))


def _require_psycopg2() -> None:
    """Fail fast with an install hint when psycopg2 is missing.

    create_engine() only imports the driver on first connect, which would
    surface as a confusing error deep inside a request.
    """
    try:
        import psycopg2  # noqa: F401
    except ImportError as e:
        logger.error("[DB] psycopg2 is not installed; run: pip install psycopg2-binary")
        raise ImportError("psycopg2 is required for PostgreSQL. Install with: pip install psycopg2-binary") from e


def _connect_args(database_url: str) -> dict:
    if database_url.lower().startswith("sqlite"):
        # Scan chunks use sessions from worker threads
        return {"check_same_thread": False}
    if _is_postgresql(database_url):
        return {"connect_timeout": 10, "application_name": "activity-merge"}
    return {}


def _get_engine() -> Engine:
    global _engine
    if _engine is None:
        url = settings.database_url
        if _is_postgresql(url):
            _require_psycopg2()
        else:
            logger.warning(f"[DB] Non-PostgreSQL database in use: {url}")

        _engine = create_engine(
            url,
            connect_args=_connect_args(url),
            pool_pre_ping=True,
            pool_recycle=3600,
        )
        logger.info(f"[DB] Engine created for {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def get_engine() -> Engine:
    """Shared engine, created on first call."""
    return _get_engine()


def _get_session_local() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_get_engine())
    return _SessionLocal


def check_database_connection() -> None:
    """Run SELECT 1 against the configured database; re-raises on failure."""
    try:
        with _get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"[DB] Connection check failed: {e}")
        raise
    logger.info("[DB] Connection check passed")


def get_db() -> Generator[Session, None, None]:
    """Session for FastAPI Depends().

    Only closes the session; the engine functions called by a route commit
    their own unit of work.
    """
    session = _get_session_local()()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Session scope for work outside a request.

    Commits pending changes when the block exits cleanly and rolls back on
    any exception. HTTPException passes through without error logging.
    """
    session = _get_session_local()()
    try:
        yield session
        if session.dirty or session.new or session.deleted:
            session.commit()
    except HTTPException:
        session.rollback()
        raise
    except Exception as e:
        logger.error(f"[DB] Rolling back session after {type(e).__name__}: {e}")
        session.rollback()
        raise
    finally:
        session.close()


def get_session_factory():
    """FastAPI dependency returning the context-manager factory scans open sessions with."""
    return get_session
