"""PriceCacheEntry ORM — cached reference ("safe") prices per item name.

Invariants:
    - base_price_usd is in dollars; services convert to cents via core.pricing.usd_to_cents
    - blacklisted items are never priced
"""

from decimal import Decimal

from sqlalchemy import Boolean, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from merchant.db.base import Base


class PriceCacheEntry(Base):
    __tablename__ = "steam_item_price_cache"

    market_hash_name: Mapped[str] = mapped_column(String(255), primary_key=True)
    base_price_usd: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False,
    )
    blacklisted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
