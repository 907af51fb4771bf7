"""Boundary Protocols — contracts between the settlement core and its collaborators.

Invariants:
    - Core NEVER imports from infrastructure — dependency arrows point inward only
    - The trading platform and the marketplace are accessed only through these Protocols
    - Implementations are provided at startup via dependency injection

Design Decisions:
    - Protocol over ABC: structural subtyping, adapters need no inheritance
    - Platform adapters may raise any exception; TradingSessionManager maps them to
      TradingSessionError so workflows see one error type
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol, Sequence

from merchant.core.domain_types import InventoryItem, UserDetails
from merchant.schemas.marketplace import (
    ActiveOffer, ItemToList, ListItemsResult, Listing, LowestPrice,
    MarketplaceItem, MarketplaceTradeOffer, Purchase, SalesPage,
)


class TradeOffer(Protocol):
    """One trade offer on the trading platform."""
    id: str | None
    state: int
    message: str
    created: datetime | None
    items_to_give: list
    items_to_receive: list

    def add_my_items(self, items: Sequence[InventoryItem]) -> None: ...
    def add_their_items(self, items: Sequence[InventoryItem]) -> None: ...
    def set_message(self, message: str) -> None: ...
    async def send(self) -> str: ...
    async def accept(self) -> str: ...
    async def decline(self) -> None: ...
    async def get_user_details(self) -> tuple[UserDetails, UserDetails]: ...


OfferChangedHandler = Callable[[TradeOffer, int], Awaitable[None]]


class TradingPlatform(Protocol):
    """Session + trade-offer capability of the trading platform."""
    steam_id: str | None
    poll_data: dict

    async def log_on(
        self, account_name: str, password: str, two_factor_secret: str,
    ) -> None: ...
    async def web_log_on(self) -> Any: ...
    def set_cookies(self, cookies: Any) -> None: ...
    def create_offer(self, trade_link_url: str) -> TradeOffer: ...
    async def get_offer(self, offer_id: str) -> TradeOffer: ...
    async def get_inventory(
        self, steam_id: str, app_id: int, context_id: int, tradable_only: bool = True,
    ) -> list[InventoryItem]: ...
    async def confirm_offer(self, offer_id: str, identity_secret: str) -> None: ...
    def on_offer_changed(self, handler: OfferChangedHandler) -> None: ...
    def on_poll_data(self, handler: Callable[[dict], Awaitable[None]]) -> None: ...
    def on_session_expired(self, handler: Callable[[], Awaitable[None]]) -> None: ...


class MarketplaceClient(Protocol):
    """Secondary marketplace used to source and sell items."""
    async def get_balance(self) -> int: ...
    async def get_lowest_prices(self, app_id: int) -> dict[str, LowestPrice]: ...
    async def get_sales(self, sale_type: int = 2, page: int = 1) -> SalesPage: ...
    async def search(
        self, app: str, market_hash_name: str, max_price: int,
    ) -> list[Listing]: ...
    async def buy_items(self, sale_ids: list[int], total: int) -> list[Purchase]: ...
    async def withdraw_items(self, item_ids: list[int]) -> list[MarketplaceTradeOffer]: ...
    async def list_items(self, items: list[ItemToList]) -> ListItemsResult: ...
    async def edit_prices(self, prices: dict[int, int]) -> None: ...
    async def get_listing_limit(self) -> int: ...
    async def get_active_trade_offers(self) -> dict[str, ActiveOffer]: ...
    async def get_inventory(self) -> list[MarketplaceItem]: ...
    async def aclose(self) -> None: ...
