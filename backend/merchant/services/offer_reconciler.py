"""Offer Reconciler — turns offer-state changes reported by the platform into trade outcomes.

Invariants:
    - Transitions out of a non-completable state are ignored
    - Offers that receive items are deposits, all others withdrawals
    - Deposit completion credits the balance at most once (guarded in the repository)
    - After a deposit completes, free inventory (minus open-withdrawal items) is listed
"""

import logging

from merchant.core.boundary_protocols import TradeOffer
from merchant.core.domain_types import TradeKind
from merchant.core.offer_outcomes import Outcome, resolve_offer_transition
from merchant.infrastructure.session_manager import TradingSessionManager
from merchant.services.marketplace_bridge import MarketplaceBridge
from merchant.services.trade_repository import TradeRepository

logger = logging.getLogger(__name__)


class OfferReconciler:
    """Handler for the platform's sent-offer-changed events."""

    def __init__(
        self,
        repository: TradeRepository,
        sessions: TradingSessionManager,
        bridge: MarketplaceBridge,
    ):
        self.repository = repository
        self.sessions = sessions
        self.bridge = bridge

    async def on_offer_changed(self, offer: TradeOffer, old_state: int) -> None:
        try:
            await self.reconcile(offer, old_state)
        except Exception:
            logger.error(
                "Failed to reconcile offer state change",
                exc_info=True, extra={"offer_id": offer.id},
            )

    async def reconcile(self, offer: TradeOffer, old_state: int) -> None:
        kind = TradeKind.DEPOSIT if offer.items_to_receive else TradeKind.WITHDRAWAL
        log_extra = {"offer_id": offer.id, "trade_kind": kind.value}
        logger.info(
            f"Sent offer changed from state {old_state} to {offer.state}", extra=log_extra,
        )

        resolution = resolve_offer_transition(old_state, offer.state)
        if resolution.outcome is Outcome.IGNORE:
            logger.info("Offer transition does not settle a trade, ignored", extra=log_extra)
            return

        trade = await self.repository.get_by_offer_id(kind, offer.id)
        if trade is None:
            logger.warning(f"No {kind.value} found for offer", extra=log_extra)
            return
        log_extra["trade_id"] = trade.id

        if resolution.outcome is Outcome.FAIL:
            logger.warning(
                f"Marking {kind.value} as failed: {resolution.message}", extra=log_extra,
            )
            await self.repository.mark_failed(kind, trade.id, resolution.message)
            return

        if kind is TradeKind.WITHDRAWAL:
            if await self.repository.complete_withdrawal(trade.id):
                logger.info("Marked withdrawal as complete", extra=log_extra)
            return

        deposit = await self.repository.complete_deposit(trade.id)
        if deposit is None:
            logger.info("Deposit already settled, balance untouched", extra=log_extra)
            return
        logger.info(
            f"Deposit complete, credited {deposit.total} + {deposit.bonus} "
            f"to {deposit.user_steam_id}",
            extra=log_extra,
        )
        listed = await self.bridge.list_free_inventory(self.sessions.merchant_steam_id)
        logger.info(
            "Listed free inventory after deposit", extra={**log_extra, "item_count": listed},
        )
