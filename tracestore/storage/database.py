"""
Database Connection Manager
===========================

Async engine/session helpers for the trace store (SQLAlchemy 2.0).

Usage:
    from tracestore.storage.database import create_engine, create_session_factory, transaction_scope

    engine = create_engine(config)
    session_factory = create_session_factory(engine)

    async with transaction_scope(session_factory) as session:
        session.add(row)
    # committed here, rolled back if the block raised
"""

import structlog
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tracestore.config import TraceStoreConfig
from tracestore.storage.models import Base

log = structlog.get_logger()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine(config: TraceStoreConfig) -> AsyncEngine:
    """
    Create the async engine for the configured database.

    Pool sizing only applies to server databases; SQLite engines keep the
    dialect's default pool.
    """
    kwargs = {"echo": config.echo, "pool_pre_ping": config.pool_pre_ping}
    if not config.is_sqlite:
        kwargs["pool_size"] = config.pool_size
        kwargs["max_overflow"] = config.max_overflow

    engine = create_async_engine(config.database_url, **kwargs)

    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    log.info("Database engine created", url=config.safe_url, dialect=engine.dialect.name)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory; objects stay readable after commit."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def transaction_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Unit of work: one session, one transaction.

    Commits when the block exits normally. Any exception (including
    cancellation) rolls the transaction back and propagates unchanged.
    """
    async with session_factory() as session:
        async with session.begin():
            yield session


async def create_tables(engine: AsyncEngine):
    """
    Create all tables defined in models.

    Use for fresh databases and tests; production schemas are managed by
    alembic migrations.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    log.info("Database tables created")


async def drop_tables(engine: AsyncEngine):
    """
    Drop all tables.

    WARNING: Destructive operation. Use only for testing.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    log.warning("All database tables dropped")


async def check_db_health(engine: AsyncEngine) -> bool:
    """
    Check if database is accessible.

    Returns:
        True if healthy, False otherwise
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        log.error("Database health check failed", error=str(e))
        return False


__all__ = [
    "create_engine",
    "create_session_factory",
    "transaction_scope",
    "create_tables",
    "drop_tables",
    "check_db_health",
]
