"""Database initialization helpers."""
from __future__ import annotations

from collections.abc import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import get_settings


class Base(DeclarativeBase):
    """Base class for ledger models."""


def _enable_sqlite_savepoints(db_engine: AsyncEngine) -> None:
    # The sqlite3 driver defers BEGIN on its own, which breaks SAVEPOINT;
    # hand transaction control to SQLAlchemy instead. IMMEDIATE takes the
    # write lock up front so concurrent writers queue on the busy timeout.
    @event.listens_for(db_engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(db_engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create a configured SQLAlchemy async engine.

    ``database_url`` overrides the configured URL, which tests and the CLI use
    to point at a specific file.
    """

    settings = get_settings()
    url = database_url or settings.database_url
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["timeout"] = settings.sqlite_busy_timeout
    db_engine = create_async_engine(url, echo=settings.echo_sql, connect_args=connect_args)
    if db_engine.dialect.name == "sqlite":
        _enable_sqlite_savepoints(db_engine)
    return db_engine


def create_session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, expire_on_commit=False)


engine = create_engine()
SessionFactory = create_session_factory(engine)


async def get_session() -> AsyncIterator[AsyncSession]:
    """Yield an :class:`AsyncSession` for FastAPI dependencies."""

    async with SessionFactory() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency returning the factory bulk imports open per-row sessions from."""

    return SessionFactory


__all__ = [
    "Base",
    "engine",
    "SessionFactory",
    "create_engine",
    "create_session_factory",
    "get_session",
    "get_session_factory",
]
