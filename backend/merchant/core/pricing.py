"""Pricing Rules — purchase guard, listing price and relist plan.

Invariants:
    - All functions are PURE: no IO, no async, no DB, no side effects
    - All prices are integer cents; ratios are applied with integer arithmetic (no float drift)
    - A purchase is refused when the cheapest listing costs more than 1.05x the safe price
      while at least 400 units are available
    - Listing price: safe price when the external lowest is <= 65% of it, else the
      external lowest times 1.05 (<= 12 available) or 1.0, rounded up
    - Relisting undercuts the external lowest by one cent, idles >= 1 hour, max 500 edits

Design Decisions:
    - Percentages kept as integer numerators over 100: ceil(p * 105 / 100) is exact
"""

from decimal import Decimal, InvalidOperation
from typing import Iterable, Mapping

from merchant.core.domain_types import Cents
from merchant.schemas.marketplace import LowestPrice, Sale

PRICE_GUARD_PERCENT = 105
PRICE_GUARD_MIN_QUANTITY = 400

UNDERVALUED_PERCENT = 65
SCARCE_QUANTITY = 12
SCARCITY_PERCENT = 105

RELIST_IDLE_SECONDS = 3600
RELIST_MAX_EDITS = 500


def usd_to_cents(value: object) -> Cents | None:
    """Convert a cached USD price to cents; None when missing or non-positive."""
    if value is None:
        return None
    try:
        cents = int((Decimal(str(value)) * 100).to_integral_value())
    except (InvalidOperation, ValueError):
        return None
    return Cents(cents) if cents > 0 else None


def _ceil_percent(amount: int, percent: int) -> int:
    return -(-amount * percent // 100)


def exceeds_price_guard(price: int, safe_price: int, quantity: int) -> bool:
    """True when buying at `price` would feed a manipulated market."""
    if quantity < PRICE_GUARD_MIN_QUANTITY:
        return False
    return price * 100 > safe_price * PRICE_GUARD_PERCENT


def is_undervalued(lowest: int, safe_price: int) -> bool:
    return lowest * 100 <= safe_price * UNDERVALUED_PERCENT


def listing_price(lowest: LowestPrice, safe_price: Cents) -> Cents:
    """Price for listing a freshly acquired item."""
    if is_undervalued(lowest.price, safe_price):
        return safe_price
    percent = SCARCITY_PERCENT if lowest.quantity <= SCARCE_QUANTITY else 100
    return Cents(_ceil_percent(lowest.price, percent))


def relist_price(lowest: int, safe_price: Cents | None) -> Cents:
    """Price for an idle listing: one cent under the market, floored at the safe price."""
    if safe_price and is_undervalued(lowest, safe_price):
        return safe_price
    return Cents(max(lowest - 1, 1))


def plan_relist(
    sales: Iterable[Sale],
    lowest_prices: Mapping[str, LowestPrice],
    safe_prices: Mapping[str, int],
    now: int,
    max_edits: int = RELIST_MAX_EDITS,
) -> dict[int, int]:
    """Sale id -> new price for every idle listing that drifted from the market."""
    edits: dict[int, int] = {}
    for sale in sales:
        if len(edits) >= max_edits:
            break
        if now - sale.updated_at < RELIST_IDLE_SECONDS:
            continue
        lowest = lowest_prices.get(sale.name)
        if lowest is None or lowest.price == sale.price:
            continue
        price = relist_price(lowest.price, safe_prices.get(sale.name))
        if price != sale.price:
            edits[sale.id] = price
    return edits
