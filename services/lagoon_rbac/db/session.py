"""
Database session management for the migration.

The migration holds a single engine and a single session for the whole run:
created once at startup, disposed once at the end.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from lagoon_rbac.logging_config import get_logger

logger = get_logger(__name__)


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine for the legacy API database."""
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Verify the database is reachable."""
    logger.info("Initializing database connection")
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("Database connection established")


async def close_db(engine: AsyncEngine) -> None:
    """Close the database connection pool."""
    logger.info("Closing database connection pool")
    await engine.dispose()
