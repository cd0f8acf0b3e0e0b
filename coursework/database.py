"""Async SQLAlchemy database engine, session factory, and utilities."""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from coursework.config import settings
from coursework.errors import PersistenceError

logger = logging.getLogger(__name__)

engine = create_async_engine(settings.DATABASE_URL, echo=settings.APP_DEBUG)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def init_db() -> None:
    """Create all tables defined by ORM models."""
    # Register every model on Base.metadata before create_all
    import coursework.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db():
    """FastAPI dependency that yields an async database session."""
    async with async_session() as session:
        yield session


async def commit_or_raise(db: AsyncSession, before: dict | None = None) -> None:
    """Commit, turning a store failure into a retryable ``PersistenceError``.

    ``before`` is the state the client should keep showing when the write is lost.
    """
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Failed to save changes: %s", e)
        raise PersistenceError("Could not save your progress, please retry", state=before) from e
