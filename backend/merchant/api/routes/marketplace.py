"""Marketplace Routes — entry point for the external relist scheduler.

Invariants:
    - POST /marketplace/relist runs one relist pass and reports how many listings changed
    - Marketplace failures surface through the MerchantError handler (502)
"""

from fastapi import APIRouter, Request

from merchant.services.marketplace_bridge import MarketplaceBridge

router = APIRouter(prefix="/api/v1/marketplace", tags=["marketplace"])


def _bridge(request: Request) -> MarketplaceBridge:
    return request.app.state.bridge


@router.post("/relist")
async def relist(request: Request):
    bridge = _bridge(request)
    edited = await bridge.relist()
    return {"enabled": bridge.enabled, "edited": edited}
