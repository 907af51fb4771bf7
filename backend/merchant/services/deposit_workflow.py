"""Deposit Workflow — user -> merchant transfer, from claim to a sent offer.

Invariants:
    - Exactly the requested asset ids are offered; any absent id fails the deposit
    - The merchant contributes no items
    - Counterparty on probation or escrow -> failure naming the hold length
"""

import logging

from merchant.core.domain_types import TradeKind
from merchant.core.errors import ErrorContext, TradeLinkMissingError
from merchant.core.inventory import select_by_asset_ids
from merchant.models.trade import TradeDeposit
from merchant.services.counterparty import ensure_can_trade, fetch_counterparty
from merchant.services.trade_workflow import TradeWorkflow

logger = logging.getLogger(__name__)

PROFILE_FAILURE = (
    "We were unable to retrieve your details. Please try creating a new deposit."
)
ESCROW_MESSAGE = "Please enable mobile authenticator and wait for {days} days."


class DepositWorkflow(TradeWorkflow):
    kind = TradeKind.DEPOSIT

    async def claim(self, trade_id: int, merchant_steam_id: str) -> TradeDeposit | None:
        return await self.repository.claim_deposit(
            trade_id, merchant_steam_id, self.app_id,
        )

    async def process(self, deposit: TradeDeposit) -> None:
        log_extra = {"trade_id": deposit.id, "trade_kind": self.kind.value}
        context = ErrorContext(trade_id=deposit.id)

        user = await self.repository.get_user(deposit.user_steam_id)
        if not user.trade_link_url:
            raise TradeLinkMissingError(context)

        asset_ids = await self.repository.get_deposit_items(deposit.id)
        logger.info(
            f"Retrieved {len(asset_ids)} item(s)",
            extra={**log_extra, "item_count": len(asset_ids)},
        )
        inventory = await self.sessions.call_with_refresh(
            self.sessions.platform.get_inventory,
            deposit.user_steam_id, self.app_id, self.context_id, True,
        )
        their_items = select_by_asset_ids(inventory, asset_ids)
        logger.info("Loaded all deposit items from user inventory", extra=log_extra)

        offer = self.sessions.platform.create_offer(user.trade_link_url)
        them = await fetch_counterparty(self.sessions, offer, PROFILE_FAILURE, context)
        ensure_can_trade(them, ESCROW_MESSAGE)

        offer.add_their_items(their_items)
        offer.set_message(f"Deposit #{deposit.id}")
        await self.send_offer(deposit.id, offer)
