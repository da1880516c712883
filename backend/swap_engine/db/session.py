"""
Async engine and session factory.

PostgreSQL runs every transaction at the configured isolation level
(SERIALIZABLE by default) so that the cycle check and the edge insert it guards
cannot interleave with a concurrent writer.

SQLite (development and tests) has no row locks; each transaction instead opens
with BEGIN IMMEDIATE, which takes the database write lock up front and
serializes writers. This is the aiosqlite recipe from the SQLAlchemy docs.
"""

from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from swap_engine.core.config import Settings, get_settings


def build_engine(url: str, settings: Optional[Settings] = None) -> AsyncEngine:
    settings = settings or get_settings()

    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=False, connect_args={"timeout": 30})

        @event.listens_for(engine.sync_engine, "connect")
        def _disable_implicit_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_async_engine(
        url,
        echo=False,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        isolation_level=settings.DB_ISOLATION_LEVEL,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
