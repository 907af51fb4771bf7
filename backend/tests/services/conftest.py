"""Service test fixtures — async DB, fake collaborators and a seeded trade store.

Invariants:
    - Every test gets a fresh in-memory SQLite database
    - The repository uses the same session factory tests read back with
    - Sleeps are recorded, never awaited for real

Design Decisions:
    - SQLite in-memory: fast, no external dependency; UPDATE ... RETURNING needs SQLite >= 3.35
"""

from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncSession, async_sessionmaker, create_async_engine,
)

from merchant.db.base import Base
import merchant.models  # noqa: F401  (register tables)
from merchant.infrastructure.session_manager import TradingSessionManager
from merchant.models.price_cache import PriceCacheEntry
from merchant.models.trade import TradeDeposit, TradeWithdrawal
from merchant.models.trade_item import TradeDepositItem, TradeWithdrawalItem
from merchant.models.user import User
from merchant.services.marketplace_bridge import MarketplaceBridge
from merchant.services.trade_repository import TradeRepository

from tests.services.fakes import (
    TRADE_LINK, USER_ID, FakeMarketplace, FakePlatform, SleepRecorder,
)

NOW = 1_700_000_000


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )


@pytest.fixture
def repository(test_session_factory):
    return TradeRepository(test_session_factory)


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def sessions(platform, tmp_path, sleep):
    return TradingSessionManager(
        platform, "test-bot",
        identity_secret="identity",
        poll_data_dir=tmp_path,
        call_timeout=1.0,
        sleep=sleep,
    )


@pytest.fixture
def marketplace(platform):
    return FakeMarketplace(platform)


@pytest.fixture
def bridge(marketplace, sessions, repository, sleep):
    return MarketplaceBridge(
        marketplace, sessions, repository, sleep=sleep, clock=lambda: NOW,
    )


class Seeder:
    """Inserts rows the upstream ordering system would normally create."""

    def __init__(self, session_factory):
        self._factory = session_factory

    async def _add(self, *rows):
        async with self._factory() as db:
            db.add_all(rows)
            await db.commit()
        return rows[0]

    async def user(self, steam_id=USER_ID, trade_link_url=TRADE_LINK, balance=0):
        return await self._add(User(
            steam_id=steam_id, trade_link_url=trade_link_url, balance=balance,
        ))

    async def deposit(self, trade_id, asset_ids, names=None, total=1000, bonus=50,
                      user_steam_id=USER_ID, **fields):
        await self._add(TradeDeposit(
            id=trade_id, user_steam_id=user_steam_id,
            item_names=names or [f"Item {a}" for a in asset_ids],
            total=total, bonus=bonus, **fields,
        ))
        if asset_ids:
            await self._add(*[
                TradeDepositItem(trade_deposit_id=trade_id, steam_asset_id=a)
                for a in asset_ids
            ])

    async def withdrawal(self, trade_id, asset_ids, names, total=1000,
                         user_steam_id=USER_ID, **fields):
        await self._add(TradeWithdrawal(
            id=trade_id, user_steam_id=user_steam_id,
            item_names=names, total=total, **fields,
        ))
        if asset_ids:
            await self._add(*[
                TradeWithdrawalItem(trade_withdrawal_id=trade_id, steam_asset_id=a)
                for a in asset_ids
            ])

    async def prices(self, prices: dict[str, str], blacklisted=()):
        await self._add(*[
            PriceCacheEntry(
                market_hash_name=name,
                base_price_usd=Decimal(usd),
                blacklisted=name in blacklisted,
            )
            for name, usd in prices.items()
        ])

    async def get(self, model, key):
        async with self._factory() as db:
            return await db.get(model, key)


@pytest.fixture
def seed(test_session_factory):
    return Seeder(test_session_factory)
