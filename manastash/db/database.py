"""
Database engine, session management and the transaction boundary.

Provides async SQLAlchemy engine and session factory for FastAPI, plus the
`transaction` context manager that every engine and folder operation runs in.
"""

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from manastash.config import settings
from manastash.models.db import Base
from manastash.models.failure import TransientError

logger = logging.getLogger(__name__)

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)

# Session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session.

    Usage in FastAPI:
        @app.get("/items")
        async def get_items(session: AsyncSession = Depends(get_session)):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            raise


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run a block as one all-or-nothing unit of work.

    Commits when the block exits normally. Any exception rolls back
    everything done inside the block. Lock timeouts, serialization
    failures and dropped connections surface as TransientError.

    Usage:
        async with transaction(session):
            result = await add_card_to_deck(session, deck_id, item_id, 2)
    """
    try:
        yield session
        await session.commit()
    except OperationalError as e:
        await session.rollback()
        logger.warning("Transaction rolled back after store error: %s", e.orig)
        raise TransientError(detail=str(e.orig)) from e
    except BaseException:
        await session.rollback()
        raise


async def init_db() -> None:
    """
    Initialize database tables.

    Creates all tables defined in the ORM models.
    Should be called once at application startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db() -> None:
    """
    Drop all database tables.

    WARNING: Destroys all data. Use only for testing.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
