"""
Async SQLAlchemy engine and session factory for the SQL-backed document store.
"""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from triptuner.config import settings

Base = declarative_base()


def create_engine_and_sessions(
    database_url: Optional[str] = None,
    echo: Optional[bool] = None,
) -> tuple[AsyncEngine, async_sessionmaker]:
    """
    Create an async engine and a matching session factory.

    Args:
        database_url: SQLAlchemy async URL (defaults to settings)
        echo: Echo SQL statements (defaults to settings)

    Returns:
        (engine, session factory)
    """
    engine = create_async_engine(
        database_url or settings.database_url,
        echo=settings.database_echo if echo is None else echo,
    )
    return engine, async_sessionmaker(engine, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create the document table if it does not exist yet."""
    # Import registers the models on Base.metadata
    from triptuner.infrastructure import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
