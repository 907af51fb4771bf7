"""Withdrawal Workflow — merchant -> user transfer, sourcing missing items from the marketplace.

Invariants:
    - Claimed only while the marketplace balance covers the withdrawal total
    - Empty or oversized (> 3) item lists fail before any marketplace call
    - Sourcing is all-or-nothing: a shortfall creates no offer, records one failure,
      then pulls leftovers back from the marketplace and relists them
    - Offers are sent and mobile-confirmed before being recorded as offered
"""

import logging

from merchant.core.domain_types import MAX_WITHDRAWAL_SIZE, InventoryItem, TradeKind
from merchant.core.errors import (
    ErrorContext, InventoryMismatchError, MarketplaceAPIError,
    SourcingShortfallError, TradeLinkMissingError, WithdrawalLimitError,
)
from merchant.core.inventory import split_direct_and_missing
from merchant.infrastructure.session_manager import TradingSessionManager
from merchant.models.trade import TradeWithdrawal
from merchant.services.counterparty import ensure_can_trade, fetch_counterparty
from merchant.services.marketplace_bridge import MarketplaceBridge
from merchant.services.trade_repository import TradeRepository
from merchant.services.trade_workflow import TradeWorkflow

logger = logging.getLogger(__name__)

PROFILE_FAILURE = (
    "You are not currently able to trade. "
    "Please consult your Steam profile for more information."
)
ESCROW_MESSAGE = "You are currently subject to a trade hold for {days} days."
NO_ITEMS_MESSAGE = "Could not retrieve the items. Please try again later."
TOO_MANY_ITEMS_MESSAGE = f"Please choose a maximum of {MAX_WITHDRAWAL_SIZE} items."


class WithdrawalWorkflow(TradeWorkflow):
    kind = TradeKind.WITHDRAWAL

    def __init__(
        self,
        repository: TradeRepository,
        sessions: TradingSessionManager,
        bridge: MarketplaceBridge,
        app_id: int = 730,
        context_id: int = 2,
    ):
        super().__init__(repository, sessions, app_id, context_id)
        self.bridge = bridge

    async def claim(
        self, trade_id: int, merchant_steam_id: str,
    ) -> TradeWithdrawal | None:
        balance = None
        if self.bridge.enabled:
            try:
                balance = await self.bridge.marketplace.get_balance()
            except MarketplaceAPIError as e:
                logger.error(
                    f"Failed to get the marketplace balance: {e.reason}",
                    extra={"trade_id": trade_id, "trade_kind": self.kind.value},
                )
                return None
        return await self.repository.claim_withdrawal(
            trade_id, merchant_steam_id, self.app_id, balance,
        )

    async def process(self, withdrawal: TradeWithdrawal) -> None:
        log_extra = {"trade_id": withdrawal.id, "trade_kind": self.kind.value}
        context = ErrorContext(trade_id=withdrawal.id)

        user = await self.repository.get_user(withdrawal.user_steam_id)
        if not user.trade_link_url:
            raise TradeLinkMissingError(context)

        asset_ids = await self.repository.get_withdrawal_items(withdrawal.id)
        if not asset_ids:
            raise WithdrawalLimitError(NO_ITEMS_MESSAGE, 0, context)
        if len(asset_ids) > MAX_WITHDRAWAL_SIZE:
            raise WithdrawalLimitError(TOO_MANY_ITEMS_MESSAGE, len(asset_ids), context)
        logger.info(
            f"Retrieved {len(asset_ids)} withdrawal item(s)",
            extra={**log_extra, "item_count": len(asset_ids)},
        )

        offer = self.sessions.platform.create_offer(user.trade_link_url)
        them = await fetch_counterparty(self.sessions, offer, PROFILE_FAILURE, context)
        ensure_can_trade(them, ESCROW_MESSAGE)

        items = await self._source(withdrawal, asset_ids)
        if len(items) < len(asset_ids):
            await self._abandon(withdrawal, len(asset_ids), len(items), context)
            return

        offer.add_my_items(items)
        offer.set_message(f"Withdrawal #{withdrawal.id}")
        await self.send_offer(withdrawal.id, offer, confirm=True)

    async def _source(
        self, withdrawal: TradeWithdrawal, asset_ids: list[str],
    ) -> list[InventoryItem]:
        """Held units first; the rest bought through the marketplace bridge."""
        names = list(withdrawal.item_names or [])
        if len(names) != len(asset_ids):
            raise InventoryMismatchError(
                [], ErrorContext(trade_id=withdrawal.id),
            )
        inventory = await self.sessions.fetch_own_inventory(self.app_id, self.context_id)
        direct, missing = split_direct_and_missing(inventory, list(zip(asset_ids, names)))
        if not missing:
            return direct

        logger.info(
            f"Sourcing {len(missing)} placeholder item(s) from the marketplace",
            extra={"trade_id": withdrawal.id, "item_count": len(missing)},
        )
        bought = await self.bridge.purchase_and_import(
            missing, exclude_asset_ids=[item.asset_id for item in direct],
        )
        return direct + bought

    async def _abandon(
        self,
        withdrawal: TradeWithdrawal,
        requested: int,
        sourced: int,
        context: ErrorContext,
    ) -> None:
        logger.error(
            "Failed to source withdrawal items",
            extra={"trade_id": withdrawal.id, "item_count": sourced},
        )
        await self.fail(withdrawal.id, SourcingShortfallError(requested, sourced, context))
        names = list(withdrawal.item_names or [])
        await self.bridge.recover_marketplace_inventory(names)
        await self.bridge.relist_leftovers(names)
