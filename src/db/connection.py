"""Database connection management for VoiceOps.

Provides asynchronous database access using SQLAlchemy. Supports SQLite
(via aiosqlite) for development with a PostgreSQL migration path for production.

Usage:
    engine = create_engine_for_url(get_database_url())
    await async_init_db(engine)
    session_factory = create_session_factory(engine)
"""

import os
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.db.models import Base


def get_database_url() -> str:
    """Get database URL from environment or use default SQLite.

    Precedence:
    1. DATABASE_URL (canonical)
    2. VOICEOPS_DB_PATH (converted to sqlite URL)
    3. sqlite:///<platform data dir>/voiceops.db
    """
    database_url = os.environ.get("DATABASE_URL", "").strip()
    if database_url:
        return database_url

    db_path = os.environ.get("VOICEOPS_DB_PATH", "").strip()
    if db_path:
        if db_path.startswith("sqlite:"):
            return db_path
        return f"sqlite:///{db_path}"

    from src.utils.paths import get_default_db_path
    return f"sqlite:///{get_default_db_path()}"


def get_async_database_url(url: str | None = None) -> str:
    """Derive the async driver URL.

    Converts sqlite:/// to sqlite+aiosqlite:/// for async support.
    """
    url = url or get_database_url()
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///")
    return url


def create_engine_for_url(url: str) -> AsyncEngine:
    """Create an async engine, configuring SQLite pragmas when applicable."""
    engine = create_async_engine(
        get_async_database_url(url),
        echo=os.environ.get("SQL_ECHO", "").lower() == "true",
    )

    if engine.url.get_backend_name() == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
            """Apply SQLite pragmas to each new connection."""
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.close()

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the session factory used by the persistence store."""
    return async_sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def async_init_db(engine: AsyncEngine) -> None:
    """Create all database tables asynchronously.

    Safe to call multiple times - will not recreate existing tables.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
