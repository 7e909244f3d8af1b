"""
Test Suite Configuration
"""
from typing import AsyncGenerator, Dict

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from gear_popularity.aggregation.weights import WeightTable
from gear_popularity.config import Settings
from gear_popularity.database.connection import SessionContextFactory, session_context
from gear_popularity.database.models import Base, EventType, GearItem

from tests.factories import CATALOG


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
    )


@pytest.fixture
def weights() -> WeightTable:
    """Weight table used across aggregation and ranking tests"""
    return WeightTable(
        version="test-v1",
        weights={
            EventType.VIEW: 1.0,
            EventType.WISHLIST_ADD: 3.0,
            EventType.OWNER_ADD: 4.0,
            EventType.COMPARE_ADD: 2.0,
            EventType.REVIEW_SUBMIT: 5.0,
        },
    )


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory SQLite database per test"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def db(test_engine) -> SessionContextFactory:
    """``get_db``-style session factory bound to the test engine"""
    return session_context(
        async_sessionmaker(bind=test_engine, class_=AsyncSession, expire_on_commit=False)
    )


@pytest_asyncio.fixture
async def catalog(db) -> Dict[str, dict]:
    """Small camera/lens catalog keyed by item id"""
    async with db() as session:
        session.add_all([GearItem(**row) for row in CATALOG])
    return {row["id"]: row for row in CATALOG}
