"""TradeItem ORM — the concrete inventory units attached to a trade."""

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from merchant.db.base import Base


class TradeDepositItem(Base):
    __tablename__ = "trade_deposit_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trade_deposit_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("trade_deposits.id"), nullable=False, index=True,
    )
    steam_asset_id: Mapped[str] = mapped_column(String(32), nullable=False)


class TradeWithdrawalItem(Base):
    __tablename__ = "trade_withdrawal_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trade_withdrawal_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("trade_withdrawals.id"), nullable=False, index=True,
    )
    steam_asset_id: Mapped[str] = mapped_column(String(32), nullable=False)
