"""Database engine and session management."""
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine
)

from facerecognizer.core.logging import get_logger
from facerecognizer.infrastructure.database.models import Base

logger = get_logger(__name__)

SQLITE_PRAGMAS = (
    "PRAGMA busy_timeout = 60000",
    "PRAGMA journal_mode = WAL",
    "PRAGMA foreign_keys = ON",
)


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; SQLite connections get WAL journaling and a busy timeout.

    Args:
        database_url: SQLAlchemy URL, e.g. ``sqlite+aiosqlite:///db.sqlite``
        echo: Whether to log emitted SQL

    Returns:
        AsyncEngine: Configured engine
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(url, echo=echo)

    if url.get_backend_name() == "sqlite":
        event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create any missing tables."""
    logger.info("Executing migrations", url=engine.url.render_as_string(hide_password=True))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session.

    Yields:
        AsyncSession: Database session

    Example:
        ```python
        async with get_db_session(factory) as session:
            await session.execute(query)
            await session.commit()
        ```
    """
    session = session_factory()
    try:
        yield session
    except Exception as e:
        logger.debug(
            "Database session error",
            error=str(e),
            error_type=type(e).__name__
        )
        await session.rollback()
        raise
    finally:
        await session.close()
