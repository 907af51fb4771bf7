"""Marketplace Bridge — sources placeholder items, imports them, and keeps our listings priced.

Invariants:
    - Sourcing is all-or-nothing: fewer purchases or fewer imported items than names -> []
    - No purchase when the cheapest listing exceeds 1.05x the safe price at quantity >= 400
    - At most 80 searches per batch, pausing 60s after every 20
    - Each search is attempted 3 times (1s then 2s apart); a buy falls back to the
      2nd then 3rd cheapest listing
    - Withdraw-to-platform is attempted 3 times, 2s apart (recovery: 30s apart)
    - An offer the marketplace sends us is declined when it would take items it should not
    - Without a marketplace key every operation is a logged no-op

Design Decisions:
    - Failures are logged and reported as empty results: a caller never crashes on the bridge
    - relist() lets MarketplaceAPIError propagate so the scheduler sees failed runs
    - Injected sleep and clock: tests run without waiting
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable, Sequence

from merchant.core.boundary_protocols import MarketplaceClient, TradeOffer
from merchant.core.domain_types import InventoryItem, MarketplaceOfferType
from merchant.core.errors import MarketplaceAPIError, TradingSessionError
from merchant.core.inventory import exclude_committed, match_by_names
from merchant.core.pricing import exceeds_price_guard, listing_price, plan_relist
from merchant.infrastructure.marketplace_client import parse_withdraw_offers
from merchant.infrastructure.session_manager import TradingSessionManager
from merchant.schemas.marketplace import ItemToList, Listing, LowestPrice, Purchase, Sale
from merchant.services.retry import first_success, retry_async
from merchant.services.trade_repository import TradeRepository

logger = logging.getLogger(__name__)

SEARCH_DELAYS = (1.0, 2.0)
SEARCH_MAX_PRICE = 100_000
SEARCHES_PER_PAUSE = 20
SEARCH_PAUSE_SECONDS = 60.0
MAX_SEARCHES = SEARCHES_PER_PAUSE * 4
BUY_CANDIDATES = 3

WITHDRAW_DELAYS = (2.0, 2.0)
RECOVERY_WITHDRAW_DELAYS = (30.0, 30.0)
INVENTORY_SETTLE_SECONDS = 2.0
ACCEPT_SETTLE_SECONDS = 1.0

ALREADY_LISTED = "already listed for sale."
NOT_LOGGED_IN = "Not Logged In"
CONFIRMATION_NOOP = "Could not act on confirmation"


class MarketplaceBridge:
    """Buys, withdraws, lists and relists items on the secondary marketplace."""

    def __init__(
        self,
        marketplace: MarketplaceClient | None,
        sessions: TradingSessionManager,
        repository: TradeRepository,
        app_id: int = 730,
        context_id: int = 2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.marketplace = marketplace
        self.sessions = sessions
        self.repository = repository
        self.app_id = app_id
        self.context_id = context_id
        self._sleep = sleep
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self.marketplace is not None

    @property
    def search_app(self) -> str:
        return f"{self.app_id}_{self.context_id}"

    def _disabled(self) -> bool:
        if self.enabled:
            return False
        logger.warning("Missing marketplace key, marketplace bridge disabled")
        return True

    # ─── Purchase and import ────────────────────────────────────

    async def purchase_and_import(
        self, names: Sequence[str], exclude_asset_ids: Iterable[str] = (),
    ) -> list[InventoryItem]:
        """Buy one unit per name, move them to our platform inventory and return them.

        Returns [] unless every name was bought and showed up in the inventory.
        Items in `exclude_asset_ids` are never returned (already used elsewhere).
        """
        if self._disabled() or not names:
            return []
        if len(names) > MAX_SEARCHES:
            logger.error(
                f"Refusing to source {len(names)} items, batch limit is {MAX_SEARCHES}",
                extra={"item_count": len(names)},
            )
            return []

        purchases = await self._buy_all(names)
        if len(purchases) != len(names):
            logger.error(
                f"Bought {len(purchases)} of {len(names)} placeholder item(s), abandoning batch",
                extra={"item_count": len(names)},
            )
            return []

        new_ids = [purchase.new_itemid for purchase in purchases]
        matched = await self._import(new_ids, names, set(exclude_asset_ids))
        if len(matched) != len(names):
            logger.error(
                "Failed to get withdrawal items from inventory",
                extra={"item_count": len(matched)},
            )
            return []
        return matched

    async def _buy_all(self, names: Sequence[str]) -> list[Purchase]:
        try:
            balance = await self.marketplace.get_balance()
        except MarketplaceAPIError as e:
            logger.error(f"Failed to get the marketplace balance: {e.reason}")
            return []
        safe_prices = await self.repository.safe_prices()
        lowest_prices = await self._lowest_prices_or_empty()

        purchases: list[Purchase] = []
        for searches, name in enumerate(names):
            if searches and searches % SEARCHES_PER_PAUSE == 0:
                await self._sleep(SEARCH_PAUSE_SECONDS)

            safe_price = safe_prices.get(name)
            if safe_price is None:
                logger.error(f"No safe price for '{name}'")
                return purchases
            try:
                listings = await retry_async(
                    lambda: self.marketplace.search(self.search_app, name, SEARCH_MAX_PRICE),
                    SEARCH_DELAYS,
                    retry_on=(MarketplaceAPIError,),
                    sleep=self._sleep,
                    label=f"Marketplace search for '{name}'",
                )
            except MarketplaceAPIError as e:
                logger.error(f"Marketplace search for '{name}' failed: {e.reason}")
                return purchases
            if not listings:
                logger.error(f"No listings for '{name}'")
                return purchases

            cheapest = listings[0]
            lowest = lowest_prices.get(name)
            quantity = lowest.quantity if lowest is not None else len(listings)
            if exceeds_price_guard(cheapest.amount, safe_price, quantity):
                logger.error(
                    f"Item too expensive: '{name}' at {cheapest.amount} "
                    f"(safe {safe_price}, quantity {quantity})",
                )
                return []

            result = await first_success(
                listings[:BUY_CANDIDATES],
                lambda listing: self._buy_listing(listing, name, balance),
                retry_on=(MarketplaceAPIError,),
                label=f"Marketplace purchase of '{name}'",
            )
            if result is None:
                return purchases
            _listing, purchase = result
            balance = purchase.balance
            purchases.append(purchase)
        return purchases

    async def _buy_listing(self, listing: Listing, name: str, balance: int) -> Purchase:
        if listing.market_name != name or listing.amount > balance:
            raise MarketplaceAPIError(
                f"listing {listing.id} not eligible (balance {balance})", "buy_items",
            )
        logger.info(f"Buying {listing.id} ({name}) on the marketplace")
        purchases = await self.marketplace.buy_items([listing.id], listing.amount)
        if not purchases:
            raise MarketplaceAPIError(f"no item returned for {listing.id}", "buy_items")
        return purchases[0]

    async def _import(
        self, item_ids: list[int], names: Sequence[str], excluded: set[str],
    ) -> list[InventoryItem]:
        """Withdraw purchased items to the platform and match them in our inventory.

        Held units in `excluded` do not count, so a withdrawal that mixes held and
        bought items still withdraws again when the bought ones are late.
        """
        try:
            await self._withdraw_with_retry(item_ids, WITHDRAW_DELAYS)
        except MarketplaceAPIError as e:
            logger.error(f"Withdraw of purchased items failed: {e.reason}")

        await self._sleep(INVENTORY_SETTLE_SECONDS)
        matched = await self._match_imported(names, excluded)
        if len(matched) < len(names):
            await self._sleep(INVENTORY_SETTLE_SECONDS)
            await self._withdraw(item_ids)
            matched = await self._match_imported(names, excluded)
        return matched

    async def _match_imported(
        self, names: Sequence[str], excluded: set[str],
    ) -> list[InventoryItem]:
        inventory = await self._own_inventory()
        return match_by_names(
            [item for item in inventory if item.asset_id not in excluded], names,
        )

    async def _own_inventory(self) -> list[InventoryItem]:
        try:
            return await self.sessions.fetch_own_inventory(self.app_id, self.context_id)
        except TradingSessionError as e:
            logger.error(f"Failed to fetch inventory items: {e.reason}")
            return []

    async def _lowest_prices_or_empty(self) -> dict[str, LowestPrice]:
        try:
            return await self.marketplace.get_lowest_prices(self.app_id)
        except MarketplaceAPIError as e:
            logger.warning(f"Lowest prices unavailable, using search depth: {e.reason}")
            return {}

    # ─── Withdraw to platform ───────────────────────────────────

    async def _withdraw(self, item_ids: list[int]) -> bool:
        """Ask the marketplace to send items over; True when at least one offer came back."""
        logger.info(
            "Withdrawing marketplace items", extra={"item_count": len(item_ids)},
        )
        try:
            offers = await self.marketplace.withdraw_items(item_ids)
        except MarketplaceAPIError as e:
            logger.error(f"One or more marketplace withdraws failed: {e.reason}")
            offers = parse_withdraw_offers(e.payload)
        if not offers:
            return False
        for offer in offers:
            if offer.tradeoffer_id is None:
                logger.error(
                    f"Did not receive a withdraw trade offer id: {offer.tradeoffer_error}",
                )
                continue
            await self.accept_marketplace_offer(
                offer.tradeoffer_id, MarketplaceOfferType.WITHDRAW,
            )
        return True

    async def _withdraw_with_retry(
        self, item_ids: list[int], delays: Sequence[float],
    ) -> None:
        async def attempt():
            if not await self._withdraw(item_ids):
                raise MarketplaceAPIError("no withdraw offer returned", "withdraw_items")

        await retry_async(
            attempt, delays,
            retry_on=(MarketplaceAPIError,),
            sleep=self._sleep,
            label="Marketplace withdraw",
        )

    # ─── Offers sent by the marketplace ─────────────────────────

    async def accept_marketplace_offer(
        self,
        offer_id: str,
        offer_type: str,
        security_token: str | None = None,
        retry_pending: bool = True,
    ) -> bool:
        """Verify and accept one platform offer the marketplace sent us."""
        try:
            offer = await self.sessions.call(self.sessions.platform.get_offer, offer_id)
        except TradingSessionError as e:
            logger.error(
                f"Failed to load marketplace trade offer: {e.reason}",
                extra={"offer_id": offer_id},
            )
            if retry_pending:
                await self.retry_pending_marketplace_offers()
            return False

        reason = _refusal_reason(offer, offer_type, security_token)
        if reason is not None:
            logger.error(
                f"Marketplace offer declined due to {reason}",
                extra={"offer_id": offer_id},
            )
            await self._decline(offer)
            return False
        return await self._accept(offer, retry_pending)

    async def retry_pending_marketplace_offers(self) -> int:
        """Accept or decline every offer the marketplace is still waiting on."""
        if self._disabled():
            return 0
        try:
            offers = await self.marketplace.get_active_trade_offers()
        except MarketplaceAPIError as e:
            logger.error(f"Failed to get active trade offers: {e.reason}")
            return 0
        accepted = 0
        for offer_id, active in offers.items():
            if await self.accept_marketplace_offer(
                offer_id, active.type, retry_pending=False,
            ):
                accepted += 1
        return accepted

    async def _accept(self, offer: TradeOffer, retry_pending: bool) -> bool:
        try:
            status = await self._accept_once(offer)
        except TradingSessionError as e:
            logger.error(
                f"Error accepting the marketplace trade offer: {e.reason}",
                extra={"offer_id": offer.id},
            )
            if retry_pending:
                await self.retry_pending_marketplace_offers()
            return False

        await self._sleep(ACCEPT_SETTLE_SECONDS)
        if status == "pending":
            try:
                await self.sessions.confirm(offer.id)
            except TradingSessionError as e:
                if e.reason != CONFIRMATION_NOOP:
                    logger.error(
                        f"Failed to confirm marketplace offer: {e.reason}",
                        extra={"offer_id": offer.id},
                    )
                    if retry_pending:
                        await self.retry_pending_marketplace_offers()
                    return False
        logger.info(
            f"Items transferred on/off the marketplace ({status})",
            extra={"offer_id": offer.id},
        )
        return True

    async def _accept_once(self, offer: TradeOffer) -> str:
        try:
            return await self.sessions.call(offer.accept)
        except TradingSessionError as e:
            if e.reason != NOT_LOGGED_IN:
                raise
            await self.sessions.refresh()
            return await self.sessions.call(offer.accept)

    async def _decline(self, offer: TradeOffer) -> bool:
        try:
            await self.sessions.call(offer.decline)
        except TradingSessionError as e:
            logger.error(
                f"Failed to decline offer: {e.reason}", extra={"offer_id": offer.id},
            )
            return False
        logger.warning("Offer declined", extra={"offer_id": offer.id})
        return True

    # ─── Listing ────────────────────────────────────────────────

    async def list_free_inventory(self, merchant_steam_id: str) -> int:
        """List everything we hold that no open withdrawal is waiting for."""
        if self._disabled():
            return 0
        inventory = await self._own_inventory()
        committed = await self.repository.open_withdrawal_item_names(merchant_steam_id)
        free = exclude_committed(inventory, committed)
        if not free:
            return 0
        return await self.list_after_acquisition(free)

    async def list_after_acquisition(self, items: Sequence[InventoryItem]) -> int:
        """Put items up for sale at listing_price(); returns how many were submitted."""
        if self._disabled() or not items:
            return 0
        try:
            lowest_prices = await self.marketplace.get_lowest_prices(self.app_id)
            limit = await self.marketplace.get_listing_limit()
        except MarketplaceAPIError as e:
            logger.error(f"Failed to prepare marketplace listing: {e.reason}")
            return 0
        if limit <= 0:
            logger.error(f"Marketplace listing limit is {limit}")
            return 0
        safe_prices = await self.repository.safe_prices()

        to_list: list[ItemToList] = []
        for item in items:
            if len(to_list) >= limit:
                break
            lowest = lowest_prices.get(item.market_hash_name)
            safe_price = safe_prices.get(item.market_hash_name)
            if lowest is None or safe_price is None:
                continue
            to_list.append(ItemToList(
                appid=self.app_id,
                contextid=self.context_id,
                assetid=item.asset_id,
                price=listing_price(lowest, safe_price),
            ))
        if to_list:
            await self._list_items(to_list)
        return len(to_list)

    async def _list_items(self, to_list: list[ItemToList]) -> None:
        try:
            result = await self.marketplace.list_items(to_list)
        except MarketplaceAPIError as e:
            if ALREADY_LISTED in e.reason:
                await self.retry_pending_marketplace_offers()
                return
            logger.error(f"Failed to list items on the marketplace: {e.reason}")
            return
        if result.tradeoffer_id is None:
            logger.error(
                f"Did not receive a trade offer id from the marketplace: "
                f"{result.tradeoffer_error}",
            )
            return
        await self.accept_marketplace_offer(
            result.tradeoffer_id,
            MarketplaceOfferType.LISTING,
            security_token=result.security_token,
        )

    # ─── Relisting ──────────────────────────────────────────────

    async def relist(self) -> int:
        """Reprice idle listings one cent under the market; returns the number edited."""
        if self._disabled():
            return 0
        lowest_prices = await self.marketplace.get_lowest_prices(self.app_id)
        logger.info(
            "Fetched marketplace price data", extra={"item_count": len(lowest_prices)},
        )
        sales = await self._all_sales()
        safe_prices = await self.repository.safe_prices()

        edits = plan_relist(sales, lowest_prices, safe_prices, int(self._clock()))
        if not edits:
            return 0
        await self.marketplace.edit_prices(edits)
        logger.info("Relisted marketplace items", extra={"item_count": len(edits)})
        return len(edits)

    async def _all_sales(self) -> list[Sale]:
        sales: list[Sale] = []
        page = 1
        while True:
            result = await self.marketplace.get_sales(2, page)
            sales.extend(result.sales)
            if page >= result.total_pages:
                break
            page += 1
        logger.info("Fetched marketplace sales data", extra={"item_count": len(sales)})
        return sales

    # ─── Compensation ───────────────────────────────────────────

    async def recover_marketplace_inventory(self, names: Sequence[str]) -> bool:
        """Pull items we still hold on the marketplace back to the platform."""
        if self._disabled():
            return False
        try:
            held = await self.marketplace.get_inventory()
        except MarketplaceAPIError as e:
            logger.error(f"Failed to fetch marketplace inventory: {e.reason}")
            return False

        wanted = set(names)
        to_withdraw: list[int] = []
        for item in held:
            if item.market_hash_name not in wanted:
                continue
            if item.offer_id is not None:
                await self.accept_marketplace_offer(
                    item.offer_id, MarketplaceOfferType.WITHDRAW,
                )
            else:
                to_withdraw.append(item.id)
        if not to_withdraw:
            return False
        try:
            await self._withdraw_with_retry(to_withdraw, RECOVERY_WITHDRAW_DELAYS)
        except MarketplaceAPIError as e:
            logger.error(f"Recovery withdraw failed: {e.reason}")
        return True

    async def relist_leftovers(self, names: Sequence[str]) -> int:
        """List units bought for an abandoned withdrawal that no open withdrawal still needs."""
        if self._disabled():
            return 0
        wanted = set(names)
        leftovers = [
            item for item in await self._own_inventory()
            if item.market_hash_name in wanted
        ]
        committed = await self.repository.open_withdrawal_item_names(
            self.sessions.merchant_steam_id,
        )
        return await self.list_after_acquisition(exclude_committed(leftovers, committed))


def _refusal_reason(
    offer: TradeOffer, offer_type: str, security_token: str | None,
) -> str | None:
    """Why a marketplace-sent offer must be declined, or None to accept it."""
    gives = bool(offer.items_to_give)
    receives = bool(offer.items_to_receive)
    if offer_type == MarketplaceOfferType.WITHDRAW and gives:
        return "having items to give"
    if offer_type == MarketplaceOfferType.PICKUP and not gives and receives:
        return "bad type"
    if offer_type == MarketplaceOfferType.RETURN and gives and not receives:
        return "bad type"
    if offer_type == MarketplaceOfferType.LISTING and (
        not security_token or security_token not in (offer.message or "")
    ):
        return "security token mismatch"
    return None
