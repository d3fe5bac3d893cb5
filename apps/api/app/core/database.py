from __future__ import annotations

import logging
from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from app.core.config import get_settings
from app.core.errors import DependencyFailure

logger = logging.getLogger("app.storage")


class Base(DeclarativeBase):
    pass


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


def enable_sqlite_foreign_keys(target: Engine) -> None:
    """SQLite ignores ON DELETE CASCADE unless each connection opts in."""

    if target.dialect.name != "sqlite":
        return

    @event.listens_for(target, "connect")
    def _foreign_keys_on(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


_database_url = get_settings().database_url
engine = create_engine(_database_url, **_engine_options(_database_url))
enable_sqlite_foreign_keys(engine)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def get_db() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def storage_guard(session: Session, message: str) -> Iterator[None]:
    """Turn driver and ORM failures inside the block into ``DependencyFailure``."""

    try:
        yield
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("storage.failed", extra={"error": str(exc)[:500]})
        raise DependencyFailure(message) from exc
