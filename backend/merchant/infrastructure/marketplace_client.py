"""Marketplace Client — async httpx wrapper over the OPSkins-style marketplace API.

Invariants:
    - Every call goes through _request(): one place for auth, timeout and envelope checks
    - A response is successful only when its envelope carries status == 1
    - All failures (transport, HTTP status, envelope, payload shape) raise MarketplaceAPIError
    - The error payload is preserved so callers can salvage partial results (withdraw offers)

Design Decisions:
    - API key sent as HTTP basic-auth user with empty password (marketplace convention)
    - No retries here: retry and fallback policy belongs to the marketplace bridge
"""

import json
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from merchant.core.errors import MarketplaceAPIError
from merchant.schemas.marketplace import (
    ActiveOffer, ItemToList, ListItemsResult, Listing, LowestPrice,
    MarketplaceItem, MarketplaceTradeOffer, Purchase, SalesPage,
)

logger = logging.getLogger(__name__)

_STATUS_OK = 1


class OPSkinsClient:
    """Typed access to the marketplace endpoints the merchant uses."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.opskins.com",
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            auth=(api_key, ""),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    # ─── Account ────────────────────────────────────────────────

    async def get_balance(self) -> int:
        data = await self._request("GET", "/IUser/GetBalance/v1/", "get_balance")
        return int(data.get("balance", 0))

    async def get_inventory(self) -> list[MarketplaceItem]:
        data = await self._request(
            "GET", "/IInventory/GetInventory/v2/", "get_inventory",
        )
        return self._parse_list(MarketplaceItem, data.get("items", []), "get_inventory")

    async def withdraw_items(self, item_ids: list[int]) -> list[MarketplaceTradeOffer]:
        data = await self._request(
            "POST", "/IInventory/Withdraw/v1/", "withdraw_items",
            data={"item_id": ",".join(str(i) for i in item_ids)},
        )
        return parse_withdraw_offers(data)

    # ─── Pricing & search ───────────────────────────────────────

    async def get_lowest_prices(self, app_id: int) -> dict[str, LowestPrice]:
        data = await self._request(
            "GET", "/IPricing/GetAllLowestListPrices/v1/", "get_lowest_prices",
            params={"appid": app_id},
        )
        try:
            return {
                name: LowestPrice.model_validate(entry)
                for name, entry in data.items()
            }
        except ValidationError as e:
            raise MarketplaceAPIError(str(e), "get_lowest_prices")

    async def search(
        self, app: str, market_hash_name: str, max_price: int,
    ) -> list[Listing]:
        """Active listings for one name, cheapest first."""
        data = await self._request(
            "GET", "/ISales/Search/v1/", "search",
            params={
                "app": app,
                "search_item": f'"{market_hash_name}"',
                "max": max_price / 100,
                "sort": "lh",
            },
        )
        listings = self._parse_list(Listing, data.get("items", []), "search")
        return sorted(listings, key=lambda listing: listing.amount)

    # ─── Buying ─────────────────────────────────────────────────

    async def buy_items(self, sale_ids: list[int], total: int) -> list[Purchase]:
        data = await self._request(
            "POST", "/ISales/BuyItems/v1/", "buy_items",
            data={"saleids": ",".join(str(i) for i in sale_ids), "total": total},
        )
        balance = data.get("balance", 0)
        items = [{**item, "balance": balance} for item in data.get("items", [])]
        purchases = self._parse_list(Purchase, items, "buy_items")
        if len(purchases) != len(sale_ids):
            logger.error(
                "Marketplace returned %d purchase(s) for %d sale id(s)",
                len(purchases), len(sale_ids),
                extra={"operation": "buy_items"},
            )
        return purchases

    # ─── Selling ────────────────────────────────────────────────

    async def get_sales(self, sale_type: int = 2, page: int = 1) -> SalesPage:
        data = await self._request(
            "GET", "/ISales/GetSales/v1/", "get_sales",
            params={"type": sale_type, "page": page},
            keep_envelope=True,
        )
        response = data.get("response") or []
        sales = response.get("sales", []) if isinstance(response, dict) else response
        try:
            return SalesPage(
                sales=sales or [],
                current_page=data.get("current_page", page),
                total_pages=data.get("total_pages", 1),
            )
        except ValidationError as e:
            raise MarketplaceAPIError(str(e), "get_sales")

    async def get_listing_limit(self) -> int:
        data = await self._request(
            "GET", "/ISales/GetListingLimit/v1/", "get_listing_limit",
        )
        return int(data.get("listing_limit", 0))

    async def list_items(self, items: list[ItemToList]) -> ListItemsResult:
        data = await self._request(
            "POST", "/ISales/ListItems/v1/", "list_items",
            data={"items": json.dumps([item.model_dump() for item in items])},
        )
        try:
            return ListItemsResult.model_validate(data)
        except ValidationError as e:
            raise MarketplaceAPIError(str(e), "list_items")

    async def edit_prices(self, prices: dict[int, int]) -> None:
        await self._request(
            "POST", "/ISales/EditPrices/v1/", "edit_prices",
            data={f"items[{sale_id}]": price for sale_id, price in prices.items()},
        )

    async def get_active_trade_offers(self) -> dict[str, ActiveOffer]:
        data = await self._request(
            "GET", "/ITrade/GetActiveTradeOffers/v1/", "get_active_trade_offers",
        )
        try:
            return {
                offer_id: ActiveOffer.model_validate(offer)
                for offer_id, offer in (data.get("offers") or {}).items()
            }
        except ValidationError as e:
            raise MarketplaceAPIError(str(e), "get_active_trade_offers")

    # ─── Transport ──────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        keep_envelope: bool = False,
    ) -> dict:
        """Perform one call and unwrap the marketplace envelope."""
        try:
            resp = await self.client.request(method, path, params=params, data=data)
        except httpx.HTTPError as e:
            raise MarketplaceAPIError(f"transport error: {e}", operation)

        try:
            body = resp.json()
        except ValueError:
            raise MarketplaceAPIError(
                f"non-JSON response (HTTP {resp.status_code})", operation,
            )
        if not isinstance(body, dict):
            raise MarketplaceAPIError("unexpected response shape", operation)

        if resp.status_code >= 400 or body.get("status") != _STATUS_OK:
            raise MarketplaceAPIError(
                str(body.get("message") or f"HTTP {resp.status_code}"),
                operation,
                payload=body.get("response") if isinstance(body.get("response"), dict) else {},
            )
        if keep_envelope:
            return body
        response = body.get("response")
        return response if isinstance(response, dict) else {"items": response or []}

    @staticmethod
    def _parse_list(model, rows: list, operation: str) -> list:
        try:
            return [model.model_validate(row) for row in rows or []]
        except ValidationError as e:
            raise MarketplaceAPIError(str(e), operation)


def parse_withdraw_offers(payload: dict) -> list[MarketplaceTradeOffer]:
    """Extract withdraw offers from a success or partial-failure payload."""
    offers = payload.get("offers")
    if isinstance(offers, dict):
        offers = offers.get("offers")
    if not offers:
        return []
    try:
        return [MarketplaceTradeOffer.model_validate(offer) for offer in offers]
    except ValidationError:
        logger.warning("Unparseable withdraw offers in marketplace payload")
        return []
