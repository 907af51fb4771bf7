"""Marketplace Schemas — Pydantic models for the marketplace API payloads.

Invariants:
    - All prices are integer minor units (cents)
    - MarketplaceItem.offer_id is None when the item has no open marketplace offer ("0", 0 or missing)
    - Unknown response fields are ignored

Design Decisions:
    - Pydantic at the boundary: the client validates once, services work with typed objects
"""

from pydantic import BaseModel, Field, field_validator


class Listing(BaseModel):
    """One active listing returned by a marketplace search."""
    id: int
    amount: int
    market_name: str
    item_id: str | None = None
    bot_id: int | None = None


class Purchase(BaseModel):
    """Result of buying one listing; balance is the account balance afterwards."""
    saleid: int
    new_itemid: int
    name: str = ""
    bot_id: int | None = None
    balance: int = 0


class LowestPrice(BaseModel):
    price: int
    quantity: int = 0


class Sale(BaseModel):
    """One of our own open listings."""
    id: int
    name: str
    price: int
    last_updated: int = 0
    list_time: int = 0

    @property
    def updated_at(self) -> int:
        return self.last_updated if self.last_updated > 0 else self.list_time


class SalesPage(BaseModel):
    sales: list[Sale] = Field(default_factory=list)
    current_page: int = 1
    total_pages: int = 1


class MarketplaceTradeOffer(BaseModel):
    """Platform trade offer the marketplace created to hand purchased items over."""
    bot_id: int | None = None
    tradeoffer_id: str | None = None
    tradeoffer_error: str | None = None
    items: list[int] = Field(default_factory=list)


class ItemToList(BaseModel):
    appid: int
    contextid: int
    assetid: str
    price: int


class ListedSale(BaseModel):
    saleid: int
    appid: int
    assetid: str
    contextid: str
    market_name: str
    price: int
    addons: list[str] = Field(default_factory=list)


class ListItemsResult(BaseModel):
    tradeoffer_id: str | None = None
    tradeoffer_error: str | None = None
    bot_id: int | None = None
    bot_id64: str | None = None
    security_token: str = ""
    sales: list[ListedSale] = Field(default_factory=list)


class MarketplaceItem(BaseModel):
    """Item held in our marketplace account (bought but not yet withdrawn)."""
    id: int
    market_hash_name: str
    offer_id: str | None = None

    @field_validator("offer_id", mode="before")
    @classmethod
    def normalize_offer_id(cls, v):
        if v in (None, 0, "0", ""):
            return None
        return str(v)


class ActiveOffer(BaseModel):
    """Marketplace-initiated platform offer still waiting for us."""
    type: str
    saleids: list[int] = Field(default_factory=list)
