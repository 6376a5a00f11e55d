"""
Shared fixtures: a throwaway SQLite database per test and an in-memory Redis.

The database lives in a file so that separate sessions use separate
connections and really contend for rows.
"""
import fakeredis
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import luba.models  # noqa: F401  (registers tables)
from luba.database import Base
from luba.models.driver import DriverProfile


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'luba.db'}",
        connect_args={"timeout": 30},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def redis():
    r = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield r
    await r.aclose()


@pytest_asyncio.fixture
async def add_driver(session_factory):
    """Returns a coroutine function that inserts a driver profile."""

    async def _add(driver_id: str, approval_status: str = "approved") -> None:
        async with session_factory() as s:
            s.add(
                DriverProfile(
                    driver_id=driver_id,
                    full_name=f"Driver {driver_id}",
                    phone_number="0821234567",
                    address="1 Main Road",
                    approval_status=approval_status,
                    active=True,
                )
            )
            await s.commit()

    return _add
