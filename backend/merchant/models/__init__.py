"""ORM Models — SQLAlchemy declarative models for the tables the merchant reads and writes.

Invariants:
    - All models inherit from Base (db/base.py)
    - Schema is owned upstream; these models mirror it, migrations live elsewhere
"""

from merchant.models.user import User  # noqa: F401
from merchant.models.trade import TradeDeposit, TradeWithdrawal  # noqa: F401
from merchant.models.trade_item import TradeDepositItem, TradeWithdrawalItem  # noqa: F401
from merchant.models.price_cache import PriceCacheEntry  # noqa: F401
