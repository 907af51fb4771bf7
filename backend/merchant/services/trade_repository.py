"""Trade Repository — every read and state transition the merchant performs on trades.

Invariants:
    - Claims are conditional UPDATE ... RETURNING: at most one merchant gets the row
    - A withdrawal is claimable only while its total fits the marketplace balance given
    - mark_failed and completion are guarded on "not yet completed and not yet failed",
      so failure records are write-once and completion happens at most once
    - complete_deposit credits the balance in the same transaction that sets completed_at
    - Each method runs in its own short unit of work; no session outlives a call

Design Decisions:
    - Session factory injected (db_manager.session in production, test factory in tests)
    - "Unclaimed" is merchant_steam_id IS NULL, no sentinel merchant id
"""

import logging
from datetime import datetime, timezone
from typing import AsyncContextManager, Callable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from merchant.core.domain_types import Cents, OfferId, SteamId, TradeId, TradeKind
from merchant.core.errors import ResourceNotFoundError
from merchant.core.pricing import usd_to_cents
from merchant.models.price_cache import PriceCacheEntry
from merchant.models.trade import TradeDeposit, TradeWithdrawal
from merchant.models.trade_item import TradeDepositItem, TradeWithdrawalItem
from merchant.models.user import User

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]

_TRADE_MODELS = {
    TradeKind.DEPOSIT: TradeDeposit,
    TradeKind.WITHDRAWAL: TradeWithdrawal,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TradeRepository:
    """Persistence for deposits, withdrawals, users and the price cache."""

    def __init__(self, session_factory: SessionFactory):
        self._session = session_factory

    # ─── Claims ─────────────────────────────────────────────────

    async def claim_deposit(
        self, deposit_id: TradeId, merchant_steam_id: SteamId, app_id: int,
    ) -> TradeDeposit | None:
        """Acknowledge an unclaimed deposit for this merchant; None if someone was first."""
        stmt = (
            update(TradeDeposit)
            .where(
                TradeDeposit.id == deposit_id,
                TradeDeposit.app_id == app_id,
                TradeDeposit.acknowledged_at.is_(None),
                TradeDeposit.merchant_steam_id.is_(None),
                TradeDeposit.cancelled_at.is_(None),
            )
            .values(acknowledged_at=_now(), merchant_steam_id=merchant_steam_id)
            .returning(TradeDeposit)
        )
        return await self._claim(stmt)

    async def claim_withdrawal(
        self,
        withdrawal_id: TradeId,
        merchant_steam_id: SteamId,
        app_id: int,
        balance: Cents | None,
    ) -> TradeWithdrawal | None:
        """Claim an unclaimed withdrawal whose total fits within `balance`.

        balance=None claims without a balance reservation (no marketplace configured).
        """
        conditions = [
            TradeWithdrawal.id == withdrawal_id,
            TradeWithdrawal.app_id == app_id,
            TradeWithdrawal.acknowledged_at.is_(None),
            TradeWithdrawal.merchant_steam_id.is_(None),
            TradeWithdrawal.cancelled_at.is_(None),
        ]
        if balance is not None:
            conditions.append(TradeWithdrawal.total <= balance)
        stmt = (
            update(TradeWithdrawal)
            .where(*conditions)
            .values(acknowledged_at=_now(), merchant_steam_id=merchant_steam_id)
            .returning(TradeWithdrawal)
        )
        return await self._claim(stmt)

    async def _claim(self, stmt):
        async with self._session() as db:
            result = await db.execute(stmt)
            row = result.scalar_one_or_none()
            await db.commit()
        return row

    # ─── Reads ──────────────────────────────────────────────────

    async def get_user(self, steam_id: SteamId) -> User:
        async with self._session() as db:
            user = await db.get(User, steam_id)
        if user is None:
            raise ResourceNotFoundError("User", steam_id)
        return user

    async def get_deposit_items(self, deposit_id: TradeId) -> list[str]:
        """Asset ids the user deposits, in insertion order."""
        return await self._asset_ids(
            select(TradeDepositItem.steam_asset_id)
            .where(TradeDepositItem.trade_deposit_id == deposit_id)
            .order_by(TradeDepositItem.id),
        )

    async def get_withdrawal_items(self, withdrawal_id: TradeId) -> list[str]:
        """Asset ids the user picked for withdrawal, in insertion order."""
        return await self._asset_ids(
            select(TradeWithdrawalItem.steam_asset_id)
            .where(TradeWithdrawalItem.trade_withdrawal_id == withdrawal_id)
            .order_by(TradeWithdrawalItem.id),
        )

    async def _asset_ids(self, stmt) -> list[str]:
        async with self._session() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def get_by_offer_id(self, kind: TradeKind, offer_id: OfferId):
        model = _TRADE_MODELS[kind]
        async with self._session() as db:
            result = await db.execute(
                select(model).where(model.steam_offer_id == offer_id),
            )
            return result.scalar_one_or_none()

    async def open_withdrawal_item_names(self, merchant_steam_id: SteamId) -> list[str]:
        """Item names committed to this merchant's unfinished withdrawals."""
        async with self._session() as db:
            result = await db.execute(
                select(TradeWithdrawal.item_names).where(
                    TradeWithdrawal.merchant_steam_id == merchant_steam_id,
                    TradeWithdrawal.completed_at.is_(None),
                    TradeWithdrawal.failed_at.is_(None),
                    TradeWithdrawal.cancelled_at.is_(None),
                ),
            )
            rows = result.scalars().all()
        return [name for names in rows for name in (names or [])]

    async def safe_prices(
        self, min_usd: float = 0, max_usd: float = 10_000,
    ) -> dict[str, Cents]:
        """Non-blacklisted cached prices in cents, keyed by item name."""
        logger.info("Retrieving database prices")
        async with self._session() as db:
            result = await db.execute(
                select(
                    PriceCacheEntry.market_hash_name,
                    PriceCacheEntry.base_price_usd,
                ).where(
                    PriceCacheEntry.blacklisted.is_(False),
                    PriceCacheEntry.base_price_usd >= min_usd,
                    PriceCacheEntry.base_price_usd <= max_usd,
                ),
            )
            rows = result.all()
        prices: dict[str, Cents] = {}
        for name, usd in rows:
            cents = usd_to_cents(usd)
            if cents is not None:
                prices[name] = cents
        return prices

    # ─── Transitions ────────────────────────────────────────────

    async def mark_offered(
        self, kind: TradeKind, trade_id: TradeId, offered_at: datetime, offer_id: OfferId,
    ) -> bool:
        model = _TRADE_MODELS[kind]
        async with self._session() as db:
            result = await db.execute(
                update(model)
                .where(
                    model.id == trade_id,
                    model.offered_at.is_(None),
                    model.failed_at.is_(None),
                )
                .values(offered_at=offered_at, steam_offer_id=offer_id),
            )
            await db.commit()
        return result.rowcount == 1

    async def mark_failed(self, kind: TradeKind, trade_id: TradeId, details: str) -> bool:
        """Write the failure record; False when the trade already finished."""
        model = _TRADE_MODELS[kind]
        async with self._session() as db:
            result = await db.execute(
                update(model)
                .where(
                    model.id == trade_id,
                    model.failed_at.is_(None),
                    model.completed_at.is_(None),
                )
                .values(failed_at=_now(), failure_details=details),
            )
            await db.commit()
        return result.rowcount == 1

    async def complete_deposit(self, deposit_id: TradeId) -> TradeDeposit | None:
        """Mark completed and credit total + bonus atomically; None if already finished."""
        async with self._session() as db:
            result = await db.execute(
                update(TradeDeposit)
                .where(
                    TradeDeposit.id == deposit_id,
                    TradeDeposit.completed_at.is_(None),
                    TradeDeposit.failed_at.is_(None),
                )
                .values(completed_at=_now())
                .returning(TradeDeposit),
            )
            deposit = result.scalar_one_or_none()
            if deposit is None:
                await db.rollback()
                return None
            await db.execute(
                update(User)
                .where(User.steam_id == deposit.user_steam_id)
                .values(
                    balance=User.balance + deposit.total + deposit.bonus,
                    last_balance_change_reason={
                        "type": "trade_deposit_completed", "id": deposit.id,
                    },
                ),
            )
            await db.commit()
        return deposit

    async def complete_withdrawal(self, withdrawal_id: TradeId) -> bool:
        async with self._session() as db:
            result = await db.execute(
                update(TradeWithdrawal)
                .where(
                    TradeWithdrawal.id == withdrawal_id,
                    TradeWithdrawal.completed_at.is_(None),
                    TradeWithdrawal.failed_at.is_(None),
                )
                .values(completed_at=_now()),
            )
            await db.commit()
        return result.rowcount == 1
