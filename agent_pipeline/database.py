"""
Database Connection Management

SQLAlchemy async engine and session factory.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from agent_pipeline.config import Settings
from agent_pipeline.logging_config import get_logger
from agent_pipeline.models import Base

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def create_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async engine for the configured database

    Pooling is disabled in debug mode and for SQLite.
    """
    engine_kwargs = {
        "echo": settings.DEBUG,  # Log SQL queries in debug mode
        "pool_pre_ping": True,
    }

    if settings.DEBUG or settings.DATABASE_URL.startswith("sqlite"):
        engine_kwargs["poolclass"] = NullPool
    else:
        engine_kwargs["pool_size"] = 20
        engine_kwargs["max_overflow"] = 40

    return create_async_engine(settings.DATABASE_URL, **engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory shared by the task store and the audit recorder"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Snapshots are built after commit
        autoflush=False,
    )


async def init_db(settings: Settings, create_schema: bool = False) -> async_sessionmaker:
    """
    Initialize the database connection

    Called on worker startup. Returns the session factory.

    Args:
        settings: Application settings
        create_schema: Create missing tables (development only)
    """
    global _engine, _session_factory

    _engine = create_engine(settings)
    try:
        async with _engine.begin() as conn:
            await conn.run_sync(lambda _: None)
        logger.info("Database connection established", url=settings.DATABASE_URL.split("@")[-1])
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        raise

    if create_schema:
        await create_tables(_engine)

    _session_factory = create_session_factory(_engine)
    return _session_factory


async def close_db() -> None:
    """
    Close the database connection

    Called on worker shutdown.
    """
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        logger.info("Database connection closed")
    _engine = None
    _session_factory = None


async def create_tables(engine: AsyncEngine) -> None:
    """
    Create all database tables

    WARNING: Only use this in development and tests. Use migrations in production.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
