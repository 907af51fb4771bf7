"""User ORM — the end user whose balance deposits credit.

Invariants:
    - steam_id is the primary key
    - balance is integer minor units; only deposit completion changes it here
    - last_balance_change_reason records which trade moved the balance last
"""

from sqlalchemy import BigInteger, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from merchant.db.base import Base


class User(Base):
    __tablename__ = "users"

    steam_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    trade_link_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_balance_change_reason: Mapped[dict | None] = mapped_column(
        JSON, nullable=True,
    )
