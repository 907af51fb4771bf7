"""Offer Outcomes — maps trading-platform offer-state transitions onto trade outcomes.

Invariants:
    - All functions are PURE: no IO, no async, no DB
    - A transition whose previous state is not completable resolves to IGNORE
    - Accepted -> COMPLETE; the six terminal rejection states -> FAIL with a fixed message
    - Every other state (Active, InEscrow, ...) -> IGNORE

Design Decisions:
    - Explicit lookup table instead of one conditional per state: every mapping visible in one place
"""

from dataclasses import dataclass
from enum import Enum

from merchant.core.domain_types import COMPLETABLE_STATES, TradeOfferState


class Outcome(str, Enum):
    COMPLETE = "complete"
    FAIL = "fail"
    IGNORE = "ignore"


@dataclass(frozen=True)
class OfferResolution:
    outcome: Outcome
    message: str | None = None


_IGNORE = OfferResolution(Outcome.IGNORE)

OFFER_STATE_OUTCOMES: dict[TradeOfferState, OfferResolution] = {
    TradeOfferState.ACCEPTED: OfferResolution(Outcome.COMPLETE),
    TradeOfferState.COUNTERED: OfferResolution(
        Outcome.FAIL,
        "A counter-offer was made. Counter-offers are not currently accepted.",
    ),
    TradeOfferState.EXPIRED: OfferResolution(Outcome.FAIL, "Trade offer expired"),
    TradeOfferState.CANCELLED: OfferResolution(Outcome.FAIL, "Trade offer cancelled"),
    TradeOfferState.DECLINED: OfferResolution(Outcome.FAIL, "Trade offer declined"),
    TradeOfferState.INVALID_ITEMS: OfferResolution(
        Outcome.FAIL, "Trade contained invalid items",
    ),
    TradeOfferState.CANCELLED_BY_SECOND_FACTOR: OfferResolution(
        Outcome.FAIL, "Trade offer cancelled by second factor",
    ),
}


def resolve_offer_transition(
    old_state: int, new_state: int,
) -> OfferResolution:
    """Outcome of an offer moving from old_state to new_state."""
    if old_state not in COMPLETABLE_STATES:
        return _IGNORE
    try:
        state = TradeOfferState(new_state)
    except ValueError:
        return _IGNORE
    return OFFER_STATE_OUTCOMES.get(state, _IGNORE)
