"""Async engine and sessions for the feed database."""

from typing import AsyncGenerator

from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from pawfeed.config import settings
from pawfeed.errors import FeedError
from pawfeed.logging_config import logger

DATABASE_URL = settings.postgres_url.replace("postgresql://", "postgresql+asyncpg://")


def build_engine(url: str):
    """Engine for ``url``; pool sizing only applies to PostgreSQL."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.debug)
    return create_async_engine(
        url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


engine = build_engine(DATABASE_URL)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; commits on success and rolls back on any error."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except (HTTPException, FeedError):
            # Expected request failures are not database errors
            await session.rollback()
            raise
        except Exception as e:
            await session.rollback()
            logger.error("Database session error", error=str(e), exc_info=True)
            raise


async def init_db():
    """Check the database connection on startup."""
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e), exc_info=True)
        raise
    logger.info("Database connection established", url=DATABASE_URL.split("@")[-1])


async def close_db():
    await engine.dispose()
    logger.info("Database connection closed")
