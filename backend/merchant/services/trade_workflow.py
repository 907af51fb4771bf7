"""Trade Workflow Base — claim gate and failure recording shared by deposits and withdrawals.

Invariants:
    - Nothing happens for a trade this merchant did not claim (duplicate events are no-ops)
    - After a successful claim every error ends as exactly one failure record, never a crash
    - Steps for one trade run strictly in sequence
"""

import logging
from datetime import datetime, timezone

from merchant.core.boundary_protocols import TradeOffer
from merchant.core.domain_types import TradeKind
from merchant.core.errors import (
    MerchantError, TradingSessionError, format_failure_details,
)
from merchant.infrastructure.session_manager import TradingSessionManager
from merchant.services.trade_repository import TradeRepository

logger = logging.getLogger(__name__)

UNEXPECTED_FAILURE = "Something went wrong while processing your trade, please try again later."


class TradeWorkflow:
    """Claim -> process -> offered | failed for one trade kind."""

    kind: TradeKind

    def __init__(
        self,
        repository: TradeRepository,
        sessions: TradingSessionManager,
        app_id: int = 730,
        context_id: int = 2,
    ):
        self.repository = repository
        self.sessions = sessions
        self.app_id = app_id
        self.context_id = context_id

    async def start(self, trade_id: int) -> None:
        log_extra = {"trade_id": trade_id, "trade_kind": self.kind.value}
        merchant_steam_id = self.sessions.merchant_steam_id
        if not merchant_steam_id:
            logger.error(
                f"Trading platform is not connected, unable to process {self.kind.value}",
                extra=log_extra,
            )
            return

        trade = await self.claim(trade_id, merchant_steam_id)
        if trade is None:
            logger.info(
                f"{self.kind.value.capitalize()} must be processed by another merchant, ignored",
                extra=log_extra,
            )
            return
        logger.info(f"Claimed {self.kind.value}", extra=log_extra)

        try:
            await self.process(trade)
        except MerchantError as e:
            logger.warning(
                f"Marking {self.kind.value} as failed: {e.failure_details}",
                extra={**log_extra, "error_code": e.code},
            )
            await self.fail(trade_id, e)
        except Exception:
            logger.error(
                f"Unexpected error while processing {self.kind.value}",
                exc_info=True, extra=log_extra,
            )
            await self.fail(trade_id, UNEXPECTED_FAILURE)

    async def claim(self, trade_id: int, merchant_steam_id: str):
        raise NotImplementedError

    async def process(self, trade) -> None:
        raise NotImplementedError

    async def fail(self, trade_id: int, err: object) -> None:
        written = await self.repository.mark_failed(
            self.kind, trade_id, format_failure_details(err),
        )
        if not written:
            logger.info(
                f"{self.kind.value.capitalize()} already finished, failure not recorded",
                extra={"trade_id": trade_id, "trade_kind": self.kind.value},
            )

    async def send_offer(self, trade_id: int, offer: TradeOffer, confirm: bool = False) -> None:
        """Transmit (and optionally confirm) the offer, then record it as offered."""
        log_extra = {"trade_id": trade_id, "trade_kind": self.kind.value}
        try:
            status = await self.sessions.call(offer.send)
            logger.info(
                f"Sent trade offer ({status})", extra={**log_extra, "offer_id": offer.id},
            )
            if confirm:
                await self.sessions.confirm(offer.id)
                logger.info("Confirmed trade offer", extra={**log_extra, "offer_id": offer.id})
        except TradingSessionError as e:
            logger.warning(
                f"Marking {self.kind.value} as failed, with failure details: {e.reason}",
                extra=log_extra,
            )
            await self.fail(trade_id, e.reason)
            return

        await self.repository.mark_offered(
            self.kind, trade_id, offer.created or datetime.now(timezone.utc), offer.id,
        )
        logger.info(f"Marked {self.kind.value} as offered", extra=log_extra)
