"""Database helpers for rsvpbot."""

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import scoped_session, sessionmaker

from .config import settings

DATABASE_URL = settings.database_url


def make_engine(url: str, **kwargs) -> Engine:
    """Create an engine with the connection options rsvpbot relies on."""
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False, "timeout": 15})
        new_engine = create_engine(url, future=True, **kwargs)
        enable_sqlite_foreign_keys(new_engine)
        return new_engine
    kwargs.setdefault("connect_args", {"connect_timeout": settings.db_connect_timeout})
    kwargs.setdefault("pool_size", settings.db_pool_size)
    return create_engine(url, future=True, pool_pre_ping=True, **kwargs)


def enable_sqlite_foreign_keys(target: Engine) -> None:
    """Enforce foreign keys on SQLite so channel rows are required as in PostgreSQL."""

    @event.listens_for(target, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def make_session_factory(bind: Engine) -> scoped_session:
    return scoped_session(
        sessionmaker(
            bind=bind,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )


engine = make_engine(DATABASE_URL)
SessionLocal = make_session_factory(engine)


@contextmanager
def session_scope(factory):
    """Yield a session from ``factory`` wrapped in commit/rollback/close."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_session():
    """Context manager returning a SQLAlchemy session."""
    return session_scope(SessionLocal)
