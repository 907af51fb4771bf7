"""Integration Tests: MarketplaceBridge — purchase guard, fallbacks, listing and relisting.

Invariants:
    - Search retried with 1s, 2s backoff; the 3rd attempt's result is used
    - Price guard refuses the whole batch; buys fall back to 2nd / 3rd cheapest
    - All-or-nothing: one unsourceable name -> nothing returned
    - Withdraw repeats while bought items are missing, whatever else is held
    - Marketplace offers are verified (items to give, security token) before acceptance
    - Relist undercuts by one cent, floors at the safe price, walks every sales page
    - Units committed to open withdrawals are never listed
"""

from merchant.core.errors import MarketplaceAPIError
from merchant.schemas.marketplace import (
    ActiveOffer, ListItemsResult, Listing, LowestPrice, MarketplaceItem, Sale, SalesPage,
)
from merchant.services.marketplace_bridge import MarketplaceBridge

from tests.services.conftest import NOW
from tests.services.fakes import MERCHANT_ID, FakeOffer, item

AK = "AK-47 | Redline"
AWP = "AWP | Asiimov"


def _listings(name, *amounts, start_id=1):
    return [
        Listing(id=start_id + i, amount=amount, market_name=name)
        for i, amount in enumerate(amounts)
    ]


# ==============================================================================
# Purchase and import
# ==============================================================================


async def test_search_fails_twice_then_uses_third_attempt(bridge, marketplace, seed, sleep):
    await seed.prices({AK: "10.00"})
    marketplace.search_results[AK] = _listings(AK, 950)
    marketplace.search_failures[AK] = 2

    items = await bridge.purchase_and_import([AK])

    assert [i.market_hash_name for i in items] == [AK]
    assert len(marketplace.called("search")) == 3
    assert sleep.calls[:2] == [1.0, 2.0]
    assert [c[1] for c in marketplace.called("buy_items")] == [[1]]


async def test_search_failing_three_times_sources_nothing(bridge, marketplace, seed):
    await seed.prices({AK: "10.00"})
    marketplace.search_results[AK] = _listings(AK, 950)
    marketplace.search_failures[AK] = 3

    assert await bridge.purchase_and_import([AK]) == []
    assert marketplace.called("buy_items") == []


async def test_price_guard_refuses_batch(bridge, marketplace, seed):
    await seed.prices({AK: "10.00", AWP: "10.00"})
    marketplace.search_results[AK] = _listings(AK, 1000)
    marketplace.search_results[AWP] = _listings(AWP, 1060, start_id=10)
    marketplace.lowest_prices[AWP] = LowestPrice(price=1060, quantity=400)

    assert await bridge.purchase_and_import([AK, AWP]) == []
    assert marketplace.called("withdraw_items") == []


async def test_price_guard_ignores_thin_markets(bridge, marketplace, seed):
    await seed.prices({AWP: "10.00"})
    marketplace.search_results[AWP] = _listings(AWP, 1060)
    marketplace.lowest_prices[AWP] = LowestPrice(price=1060, quantity=399)

    assert len(await bridge.purchase_and_import([AWP])) == 1


async def test_buy_falls_back_to_next_cheapest(bridge, marketplace, seed):
    await seed.prices({AK: "10.00"})
    marketplace.search_results[AK] = _listings(AK, 900, 910, 920, 930)
    marketplace.buy_failures = {1, 2}

    items = await bridge.purchase_and_import([AK])

    assert len(items) == 1
    assert [c[1] for c in marketplace.called("buy_items")] == [[1], [2], [3]]


async def test_buy_gives_up_after_three_candidates(bridge, marketplace, seed):
    await seed.prices({AK: "10.00"})
    marketplace.search_results[AK] = _listings(AK, 900, 910, 920, 930)
    marketplace.buy_failures = {1, 2, 3}

    assert await bridge.purchase_and_import([AK]) == []
    assert len(marketplace.called("buy_items")) == 3


async def test_listing_above_balance_is_skipped(bridge, marketplace, seed):
    await seed.prices({AK: "10.00"})
    marketplace.balance = 905
    marketplace.search_results[AK] = _listings(AK, 900, 910)
    marketplace.buy_failures = {1}

    assert await bridge.purchase_and_import([AK]) == []
    assert [c[1] for c in marketplace.called("buy_items")] == [[1]]


async def test_all_or_nothing_when_one_name_unavailable(bridge, marketplace, seed):
    await seed.prices({AK: "10.00", AWP: "10.00"})
    marketplace.search_results[AK] = _listings(AK, 900)

    assert await bridge.purchase_and_import([AK, AWP]) == []
    assert marketplace.called("withdraw_items") == []


async def test_missing_safe_price_sources_nothing(bridge, marketplace):
    marketplace.search_results[AK] = _listings(AK, 900)

    assert await bridge.purchase_and_import([AK]) == []
    assert marketplace.called("search") == []


async def test_withdraw_retried_then_items_matched(bridge, marketplace, platform, seed, sleep):
    await seed.prices({AK: "10.00"})
    marketplace.search_results[AK] = _listings(AK, 900)
    marketplace.withdraw_failures = 2

    items = await bridge.purchase_and_import([AK])

    assert [i.market_hash_name for i in items] == [AK]
    assert len(marketplace.called("withdraw_items")) == 3
    assert sleep.calls.count(2.0) >= 3


async def test_withdraw_offer_with_items_to_give_is_declined(bridge, platform):
    platform.offers["wd-1"] = FakeOffer(
        offer_id="wd-1", items_to_give=[item("x", AK)],
    )

    assert await bridge.accept_marketplace_offer("wd-1", "withdraw") is False
    assert platform.offers["wd-1"].declined


async def test_empty_inventory_triggers_second_withdraw(bridge, marketplace, seed):
    await seed.prices({AK: "10.00"})
    marketplace.search_results[AK] = _listings(AK, 900)
    marketplace.deliver = False

    assert await bridge.purchase_and_import([AK]) == []
    assert len(marketplace.called("withdraw_items")) == 2


async def test_excluded_held_unit_does_not_stop_second_withdraw(
    bridge, marketplace, platform, seed,
):
    await seed.prices({AWP: "10.00"})
    marketplace.search_results[AWP] = _listings(AWP, 900)
    marketplace.undelivered_withdraws = 1
    platform.inventories[MERCHANT_ID] = [item("w1", AK)]

    items = await bridge.purchase_and_import([AWP], exclude_asset_ids=["w1"])

    assert [i.market_hash_name for i in items] == [AWP]
    assert len(marketplace.called("withdraw_items")) == 2


async def test_batch_pauses_every_twenty_searches(bridge, marketplace, seed, sleep):
    names = [f"Sticker {i}" for i in range(21)]
    await seed.prices({name: "1.00" for name in names})
    for i, name in enumerate(names):
        marketplace.search_results[name] = _listings(name, 90, start_id=100 * (i + 1))

    items = await bridge.purchase_and_import(names)

    assert len(items) == 21
    assert sleep.calls.count(60.0) == 1


async def test_disabled_bridge_is_noop(sessions, repository):
    bridge = MarketplaceBridge(None, sessions, repository)

    assert bridge.enabled is False
    assert await bridge.purchase_and_import([AK]) == []
    assert await bridge.relist() == 0


# ==============================================================================
# Listing after acquisition
# ==============================================================================


async def test_list_prices_and_accepts_listing_offer(bridge, marketplace, platform, seed):
    await seed.prices({AK: "10.00", AWP: "10.00"})
    marketplace.lowest_prices = {
        AK: LowestPrice(price=1000, quantity=5),
        AWP: LowestPrice(price=600, quantity=50),
    }
    platform.offers["list-1"] = FakeOffer(
        offer_id="list-1", message="Security token tok123",
        items_to_give=[item("a1", AK)],
    )

    listed = await bridge.list_after_acquisition([item("a1", AK), item("a2", AWP)])

    assert listed == 2
    prices = {i.assetid: i.price for i in marketplace.listed[0]}
    assert prices == {"a1": 1050, "a2": 1000}
    assert platform.offers["list-1"].accepts == 1


async def test_listing_offer_without_token_is_declined(bridge, marketplace, platform, seed):
    await seed.prices({AK: "10.00"})
    marketplace.lowest_prices = {AK: LowestPrice(price=1000, quantity=50)}
    platform.offers["list-1"] = FakeOffer(offer_id="list-1", message="hello")

    await bridge.list_after_acquisition([item("a1", AK)])

    assert platform.offers["list-1"].declined
    assert platform.offers["list-1"].accepts == 0


async def test_listing_respects_limit(bridge, marketplace, seed):
    await seed.prices({AK: "10.00"})
    marketplace.lowest_prices = {AK: LowestPrice(price=1000, quantity=50)}
    marketplace.listing_limit = 1
    marketplace.list_result = ListItemsResult(tradeoffer_id=None, tradeoffer_error="busy")

    assert await bridge.list_after_acquisition([item("a1", AK), item("a2", AK)]) == 1


async def test_already_listed_retries_pending_offers(bridge, marketplace, platform, seed):
    await seed.prices({AK: "10.00"})
    marketplace.lowest_prices = {AK: LowestPrice(price=1000, quantity=50)}
    marketplace.list_error = MarketplaceAPIError(
        "Item is already listed for sale.", "list_items",
    )
    marketplace.active_offers = {"p-1": ActiveOffer(type="withdraw", saleids=[1])}
    platform.offers["p-1"] = FakeOffer(offer_id="p-1", items_to_receive=[item("b", AK)])

    await bridge.list_after_acquisition([item("a1", AK)])

    assert platform.offers["p-1"].accepts == 1


async def test_list_free_inventory_excludes_committed(bridge, marketplace, platform, seed):
    await seed.user()
    await seed.withdrawal(1, ["w"], [AK], merchant_steam_id=MERCHANT_ID)
    await seed.prices({AK: "10.00", AWP: "10.00"})
    marketplace.lowest_prices = {
        AK: LowestPrice(price=1000, quantity=50),
        AWP: LowestPrice(price=1000, quantity=50),
    }
    marketplace.list_result = ListItemsResult(tradeoffer_id=None)
    platform.inventories[MERCHANT_ID] = [item("a1", AK), item("a2", AK), item("a3", AWP)]

    assert await bridge.list_free_inventory(MERCHANT_ID) == 2
    assert sorted(i.assetid for i in marketplace.listed[0]) == ["a2", "a3"]


# ==============================================================================
# Accepting marketplace offers
# ==============================================================================


async def test_accept_relogs_once_on_not_logged_in(bridge, platform):
    platform.offers["o"] = FakeOffer(
        offer_id="o", items_to_receive=[item("b", AK)],
        accept_results=[RuntimeError("Not Logged In"), "accepted"],
    )

    assert await bridge.accept_marketplace_offer("o", "withdraw") is True
    assert platform.web_log_ons == 1
    assert platform.offers["o"].accepts == 2


async def test_pending_accept_is_confirmed(bridge, platform):
    platform.offers["o"] = FakeOffer(
        offer_id="o", items_to_receive=[item("b", AK)], accept_results=["pending"],
    )

    assert await bridge.accept_marketplace_offer("o", "withdraw") is True
    assert platform.confirmed == ["o"]


async def test_confirmation_noop_is_tolerated(bridge, platform):
    platform.offers["o"] = FakeOffer(
        offer_id="o", items_to_receive=[item("b", AK)], accept_results=["pending"],
    )
    platform.confirm_error = RuntimeError("Could not act on confirmation")

    assert await bridge.accept_marketplace_offer("o", "withdraw") is True


async def test_retry_pending_declines_bad_pickup(bridge, marketplace, platform):
    marketplace.active_offers = {
        "pick": ActiveOffer(type="pickup"),
        "ret": ActiveOffer(type="return"),
    }
    platform.offers["pick"] = FakeOffer(offer_id="pick", items_to_receive=[item("b", AK)])
    platform.offers["ret"] = FakeOffer(
        offer_id="ret", items_to_give=[item("c", AK)], items_to_receive=[item("d", AK)],
    )

    assert await bridge.retry_pending_marketplace_offers() == 1
    assert platform.offers["pick"].declined
    assert platform.offers["ret"].accepts == 1


# ==============================================================================
# Relisting
# ==============================================================================


async def test_relist_undercuts_idle_listings(bridge, marketplace, seed):
    await seed.prices({AK: "10.00", AWP: "10.00"})
    marketplace.lowest_prices = {
        AK: LowestPrice(price=1200, quantity=50),
        AWP: LowestPrice(price=500, quantity=50),
    }
    marketplace.sales_pages = [
        SalesPage(
            sales=[
                Sale(id=1, name=AK, price=1300, last_updated=NOW - 3600),
                Sale(id=2, name=AK, price=1300, last_updated=NOW - 60),
            ],
            current_page=1, total_pages=2,
        ),
        SalesPage(
            sales=[Sale(id=3, name=AWP, price=900, list_time=NOW - 7200)],
            current_page=2, total_pages=2,
        ),
    ]

    edited = await bridge.relist()

    assert edited == 2
    assert marketplace.edited == [{1: 1199, 3: 1000}]
    assert len(marketplace.called("get_sales")) == 2


async def test_relist_without_changes_skips_edit(bridge, marketplace):
    marketplace.lowest_prices = {AK: LowestPrice(price=1200)}
    marketplace.sales_pages = [SalesPage(sales=[Sale(id=1, name=AK, price=1200)])]

    assert await bridge.relist() == 0
    assert marketplace.edited == []


# ==============================================================================
# Compensation
# ==============================================================================


async def test_recovery_accepts_open_offers_and_withdraws_rest(bridge, marketplace, platform):
    marketplace.held = [
        MarketplaceItem(id=55, market_hash_name=AK, offer_id=None),
        MarketplaceItem(id=56, market_hash_name=AK, offer_id="777"),
        MarketplaceItem(id=57, market_hash_name=AWP, offer_id=None),
    ]
    platform.offers["777"] = FakeOffer(offer_id="777", items_to_receive=[item("x", AK)])

    assert await bridge.recover_marketplace_inventory([AK]) is True
    assert platform.offers["777"].accepts == 1
    assert [c[1] for c in marketplace.called("withdraw_items")] == [[55]]


async def test_recovery_withdraw_waits_thirty_seconds(bridge, marketplace, sleep):
    marketplace.held = [MarketplaceItem(id=55, market_hash_name=AK)]
    marketplace.withdraw_failures = 3

    assert await bridge.recover_marketplace_inventory([AK]) is True
    assert len(marketplace.called("withdraw_items")) == 3
    assert sleep.calls.count(30.0) == 2


async def test_relist_leftovers_lists_matching_names(bridge, marketplace, platform, seed):
    await seed.prices({AK: "10.00", AWP: "10.00"})
    marketplace.lowest_prices = {
        AK: LowestPrice(price=1000, quantity=50),
        AWP: LowestPrice(price=1000, quantity=50),
    }
    marketplace.list_result = ListItemsResult(tradeoffer_id=None)
    platform.inventories[MERCHANT_ID] = [item("a1", AK), item("a2", AWP)]

    assert await bridge.relist_leftovers([AK]) == 1
    assert [i.assetid for i in marketplace.listed[0]] == ["a1"]


async def test_relist_leftovers_skips_units_for_open_withdrawals(
    bridge, marketplace, platform, seed,
):
    await seed.user()
    await seed.withdrawal(2, ["w9"], [AK], merchant_steam_id=MERCHANT_ID)
    await seed.prices({AK: "10.00"})
    marketplace.lowest_prices = {AK: LowestPrice(price=1000, quantity=50)}
    platform.inventories[MERCHANT_ID] = [item("w9", AK)]

    assert await bridge.relist_leftovers([AK]) == 0
    assert marketplace.listed == []
