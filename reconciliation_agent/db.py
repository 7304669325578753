import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

# Register every table on SQLModel.metadata
import reconciliation_agent.models  # noqa: F401

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


def create_engine_for_url(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Build the async engine for the shared datastore.

    PostgreSQL (asyncpg) gets a small pool with pre-ping, since the datastore is
    shared with the storefront and idle connections are dropped upstream.
    """
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)

    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=5,  # One run at a time per process
        max_overflow=5,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=300,  # Recycle connections every 5 min
        pool_timeout=30,
        connect_args={"command_timeout": 30},  # asyncpg statement timeout
    )


def create_session_factory(engine: AsyncEngine) -> SessionFactory:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_db_and_tables(engine: AsyncEngine) -> None:
    """Create missing tables. Tables owned by the storefront are left untouched if present."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables ensured")


async def check_connection(engine: AsyncEngine) -> Optional[str]:
    """Return None when the datastore answers, otherwise the error message."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Database connectivity check failed: {e}")
        return str(e)
    return None
