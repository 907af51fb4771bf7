"""Counterparty Checks — profile fetch and trade-restriction rules for the other party of an offer.

Invariants:
    - The profile fetch is retried exactly once after a session refresh
    - A failed fetch surfaces as TradingSessionError carrying the caller's user-facing message
    - Probation is checked before escrow; any escrow hold (> 0 days) refuses the trade
"""

from merchant.core.boundary_protocols import TradeOffer
from merchant.core.domain_types import UserDetails
from merchant.core.errors import (
    AccountRestrictedError, ErrorContext, TradingSessionError,
)
from merchant.infrastructure.session_manager import TradingSessionManager

PROBATION_MESSAGE = (
    "You are not currently able to trade. "
    "Please consult your Steam profile for more information."
)


async def fetch_counterparty(
    sessions: TradingSessionManager,
    offer: TradeOffer,
    failure_message: str,
    context: ErrorContext | None = None,
) -> UserDetails:
    """Profile of the offer's recipient; `failure_message` prefixes the error on failure."""
    try:
        _us, them = await sessions.call_with_refresh(offer.get_user_details)
    except TradingSessionError as e:
        ctx = context or ErrorContext()
        ctx.user_message = f"{failure_message} Error: {e.reason}"
        raise TradingSessionError(e.reason, e.operation, ctx) from e
    return them


def ensure_can_trade(
    them: UserDetails,
    escrow_message: str,
    probation_message: str = PROBATION_MESSAGE,
) -> None:
    """Raise AccountRestrictedError when the counterparty cannot trade instantly.

    escrow_message is formatted with ``days``.
    """
    if them.probation:
        raise AccountRestrictedError(probation_message)
    if them.escrow_days > 0:
        raise AccountRestrictedError(
            escrow_message.format(days=them.escrow_days),
            escrow_days=them.escrow_days,
        )
