"""Async database engine and session management."""

import logging

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from rental_pipeline.app.config import get_settings

logger = logging.getLogger(__name__)

# Seconds a SQLite writer waits for the database lock before failing
SQLITE_LOCK_TIMEOUT = 30


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all models."""
    pass


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _sqlite_on_connect(dbapi_connection, connection_record):
    """Per-connection SQLite setup: enforce foreign keys (ON DELETE SET NULL
    on appointment/offer links) and wait on locks instead of failing."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_LOCK_TIMEOUT * 1000}")
    cursor.close()


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine with backend-appropriate connection options.

    SQLite gets a lock timeout and the per-connection pragmas above; server
    databases get a bounded connection pool.
    """
    kwargs = {"echo": False}  # Set True only when debugging SQL queries
    if _is_sqlite(database_url):
        kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": SQLITE_LOCK_TIMEOUT,
        }
    else:
        kwargs["pool_size"] = 5
        kwargs["max_overflow"] = 10

    new_engine = create_async_engine(database_url, **kwargs)
    if _is_sqlite(database_url):
        event.listen(new_engine.sync_engine, "connect", _sqlite_on_connect)
    return new_engine


settings = get_settings()

engine = build_engine(settings.database_url)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency: yield an async database session."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """Create all tables (for local dev). Use Alembic for production migrations."""
    # Ensure models are registered with Base.metadata
    import rental_pipeline.domain.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # WAL mode lets readers proceed while the single writer holds the lock.
    if _is_sqlite(settings.database_url):
        async with engine.begin() as conn:
            await conn.execute(text("PRAGMA journal_mode=WAL"))

    logger.info(
        "Database initialised (%s)",
        "sqlite" if _is_sqlite(settings.database_url) else "server",
    )
