"""Domain Types — identifiers, enums and constants shared by every layer.

Invariants:
    - SteamId, AssetId, OfferId wrap str; TradeId wraps int; Cents wraps int (minor
      currency units, as returned by pricing and the price cache)
    - TradeOfferState values match the trading platform's numeric offer states
    - "Unclaimed" is represented by merchant_steam_id being None, never by a sentinel id

Design Decisions:
    - NewType over wrappers: zero runtime cost, full type-checker support
    - str Enum for TradeKind: doubles as log field and table discriminator
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import NewType


# ─── Identity Types ──────────────────────────────────────────────

SteamId = NewType("SteamId", str)
AssetId = NewType("AssetId", str)
TradeId = NewType("TradeId", int)
OfferId = NewType("OfferId", str)


# ─── Value Types ─────────────────────────────────────────────────

Cents = NewType("Cents", int)


# ─── Constants ───────────────────────────────────────────────────

MAX_WITHDRAWAL_SIZE = 3


# ─── Enums ───────────────────────────────────────────────────────

class TradeKind(str, Enum):
    """Direction of a trade, seen from the merchant."""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class TradeOfferState(IntEnum):
    """Offer states reported by the trading platform."""
    INVALID = 1
    ACTIVE = 2
    ACCEPTED = 3
    COUNTERED = 4
    EXPIRED = 5
    CANCELLED = 6
    DECLINED = 7
    INVALID_ITEMS = 8
    CREATED_NEEDS_CONFIRMATION = 9
    CANCELLED_BY_SECOND_FACTOR = 10
    IN_ESCROW = 11


# Only transitions out of these states may complete or fail a trade
COMPLETABLE_STATES = frozenset({
    TradeOfferState.ACTIVE,
    TradeOfferState.CREATED_NEEDS_CONFIRMATION,
})


class MarketplaceOfferType(str, Enum):
    """Kind of trade offer the marketplace bot sends us."""
    WITHDRAW = "withdraw"
    PICKUP = "pickup"
    RETURN = "return"
    LISTING = "listing"


# ─── Platform value objects ──────────────────────────────────────

@dataclass(frozen=True)
class InventoryItem:
    """One tradable unit in a platform inventory."""
    asset_id: AssetId
    market_hash_name: str
    app_id: int = 730
    context_id: int = 2


@dataclass(frozen=True)
class UserDetails:
    """Trade-relevant profile of one party of an offer."""
    persona_name: str = ""
    escrow_days: int = 0
    probation: bool = False

