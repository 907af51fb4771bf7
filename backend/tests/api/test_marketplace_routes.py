"""Relist endpoint — runs one pass, maps marketplace failures to 502."""

from merchant.core.errors import MarketplaceAPIError
from merchant.main import app
from merchant.schemas.marketplace import LowestPrice, Sale, SalesPage


async def test_relist_reports_edits(client, marketplace):
    marketplace.lowest_prices = {"AK": LowestPrice(price=1200, quantity=50)}
    marketplace.sales_pages = [SalesPage(sales=[Sale(id=1, name="AK", price=1300)])]

    resp = await client.post("/api/v1/marketplace/relist")

    assert resp.status_code == 200
    assert resp.json() == {"enabled": True, "edited": 1}
    assert marketplace.edited == [{1: 1199}]


async def test_relist_marketplace_failure_is_502(client, marketplace, monkeypatch):
    async def down(app_id):
        raise MarketplaceAPIError("maintenance", "get_lowest_prices")

    monkeypatch.setattr(marketplace, "get_lowest_prices", down)

    resp = await client.post("/api/v1/marketplace/relist")

    assert resp.status_code == 502
    assert resp.json()["error"]["code"] == "MARKETPLACE_API_ERROR"


async def test_relist_disabled_without_key(client):
    app.state.bridge.marketplace = None

    resp = await client.post("/api/v1/marketplace/relist")

    assert resp.json() == {"enabled": False, "edited": 0}
