"""API test fixtures — ASGI client over the app with engine state injected."""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession, async_sessionmaker, create_async_engine,
)

import merchant.infrastructure.database as db_module
from merchant.db.base import Base
import merchant.models  # noqa: F401  (register tables)
from merchant.infrastructure.database import DatabaseSessionManager
from merchant.infrastructure.session_manager import TradingSessionManager
from merchant.main import app
from merchant.services.marketplace_bridge import MarketplaceBridge
from merchant.services.trade_repository import TradeRepository

from tests.services.fakes import FakeMarketplace, FakePlatform, SleepRecorder


@pytest.fixture
async def test_engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def marketplace(platform):
    return FakeMarketplace(platform)


@pytest.fixture
async def client(test_engine, platform, marketplace, tmp_path):
    """App client; lifespan is not run, engine parts are placed on app.state."""
    original_manager = db_module.db_manager
    fake_manager = DatabaseSessionManager.__new__(DatabaseSessionManager)
    fake_manager.engine = test_engine
    fake_manager._session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )
    db_module.db_manager = fake_manager

    sessions = TradingSessionManager(platform, "test-bot", poll_data_dir=tmp_path)
    app.state.sessions = sessions
    app.state.bridge = MarketplaceBridge(
        marketplace, sessions, TradeRepository(fake_manager.session),
        sleep=SleepRecorder(), clock=lambda: 1_700_000_000,
    )

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    db_module.db_manager = original_manager
    del app.state.sessions
    del app.state.bridge
