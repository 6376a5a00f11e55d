"""
Async engine, session factory and declarative base.
"""
import logging
from collections.abc import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from luba.config import get_settings
from luba.errors import NetworkError

logger = logging.getLogger(__name__)
settings = get_settings()

engine = create_async_engine(settings.database_url, pool_pre_ping=True)

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Used by long-lived subscriptions that open a session per snapshot."""
    return AsyncSessionLocal


async def safe_commit(db: AsyncSession, what: str) -> None:
    """Commit, or roll back and raise NetworkError if the store fails."""
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Commit failed while %s: %s", what, exc)
        raise NetworkError("Could not save your changes. Please try again.") from exc
