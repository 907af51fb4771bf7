"""Trade ORM — deposit and withdrawal rows created by the upstream ordering system.

Invariants:
    - Lifecycle is monotonic: unclaimed -> claimed -> offered -> completed | failed
    - merchant_steam_id is None while unclaimed and never changes once set
    - failed_at and failure_details are written together, exactly once
    - Rows are never deleted by the merchant

Design Decisions:
    - Shared columns in a mixin, one table per kind (matches the upstream schema)
    - Underscore-prefixed upstream columns (_item_names, _total, _bonus) mapped to plain attributes
"""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from merchant.db.base import Base


class TradeMixin:
    """Columns common to deposits and withdrawals."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    app_id: Mapped[int] = mapped_column(Integer, nullable=False, default=730)
    user_steam_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("users.steam_id"), nullable=False,
    )
    item_names: Mapped[list] = mapped_column(
        "_item_names", JSON, nullable=False, default=list,
    )
    total: Mapped[int] = mapped_column(
        "_total", BigInteger, nullable=False, default=0,
    )
    merchant_steam_id: Mapped[str | None] = mapped_column(
        String(32), nullable=True,
    )
    acknowledged_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    offered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    steam_offer_id: Mapped[str | None] = mapped_column(
        String(32), nullable=True, index=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    failed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    failure_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )


class TradeDeposit(TradeMixin, Base):
    """User -> merchant transfer, credited to the user's balance on completion."""
    __tablename__ = "trade_deposits"

    bonus: Mapped[int] = mapped_column(
        "_bonus", BigInteger, nullable=False, default=0,
    )


class TradeWithdrawal(TradeMixin, Base):
    """Merchant -> user transfer; the balance debit happens upstream."""
    __tablename__ = "trade_withdrawals"
