"""Merchant API — FastAPI application entry point and engine wiring.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map MerchantError -> structured JSON responses
    - The lifespan owns every long-lived resource: DB pool, marketplace client,
      trading session, notification listener; shutdown releases all of them
    - The trading platform adapter is loaded from settings ("module:factory")

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - Engine components kept on app.state so routes reach them without globals
"""

import asyncio
import contextlib
import importlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from merchant.api.error_handlers import register_error_handlers
from merchant.api.routes import health, marketplace
from merchant.config import Settings, get_settings
from merchant.core.boundary_protocols import TradingPlatform
from merchant.core.errors import ErrorCategory, ErrorSeverity, MerchantError
from merchant.infrastructure.database import init_db
from merchant.infrastructure.marketplace_client import OPSkinsClient
from merchant.infrastructure.notification_listener import NotificationListener
from merchant.infrastructure.observability import setup_logging
from merchant.infrastructure.session_manager import TradingSessionManager
from merchant.services.deposit_workflow import DepositWorkflow
from merchant.services.marketplace_bridge import MarketplaceBridge
from merchant.services.notification_dispatcher import CHANNELS, NotificationDispatcher
from merchant.services.offer_reconciler import OfferReconciler
from merchant.services.trade_repository import TradeRepository
from merchant.services.withdrawal_workflow import WithdrawalWorkflow

logger = logging.getLogger(__name__)


def load_trading_platform(settings: Settings) -> TradingPlatform:
    """Instantiate the platform adapter named by trading_platform_factory."""
    target = settings.trading_platform_factory
    if not target or ":" not in target:
        raise MerchantError(
            "STEAMBOT_TRADING_PLATFORM_FACTORY must name 'module:factory'",
            "PLATFORM_NOT_CONFIGURED", ErrorCategory.CONFIGURATION,
            ErrorSeverity.CRITICAL,
        )
    module_name, _, attr = target.partition(":")
    factory = getattr(importlib.import_module(module_name), attr)
    return factory(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    db = init_db(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    repository = TradeRepository(db.session)

    sessions = TradingSessionManager(
        load_trading_platform(settings),
        settings.account_name,
        password=settings.account_password,
        two_factor_secret=settings.shared_secret,
        identity_secret=settings.identity_secret,
        poll_data_dir=settings.poll_data_dir,
        call_timeout=settings.platform_call_timeout_seconds,
    )
    market_client = None
    if settings.marketplace_api_key:
        market_client = OPSkinsClient(
            settings.marketplace_api_key,
            base_url=settings.marketplace_base_url,
            timeout_seconds=settings.marketplace_timeout_seconds,
        )
    bridge = MarketplaceBridge(
        market_client, sessions, repository, settings.app_id, settings.context_id,
    )
    dispatcher = NotificationDispatcher(
        DepositWorkflow(repository, sessions, settings.app_id, settings.context_id),
        WithdrawalWorkflow(
            repository, sessions, bridge, settings.app_id, settings.context_id,
        ),
        deposit_jitter=settings.deposit_jitter_seconds,
        withdrawal_jitter=settings.withdrawal_jitter_seconds,
    )
    reconciler = OfferReconciler(repository, sessions, bridge)

    await sessions.start()
    sessions.platform.on_offer_changed(reconciler.on_offer_changed)
    listener = NotificationListener(
        settings.listener_dsn, CHANNELS, dispatcher.dispatch,
        reconnect_delay=settings.listener_reconnect_delay_seconds,
    )
    listener_task = asyncio.create_task(listener.run())

    app.state.sessions = sessions
    app.state.bridge = bridge
    app.state.dispatcher = dispatcher
    logger.info("Merchant started", extra={"merchant_steam_id": sessions.merchant_steam_id})
    yield
    logger.info("Merchant shutting down")

    listener_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await listener_task
    await dispatcher.drain()
    if market_client is not None:
        await market_client.aclose()
    await db.dispose()


app = FastAPI(title="Steam Merchant", version="1.0.0", lifespan=lifespan)

app.include_router(health.router)
app.include_router(marketplace.router)

register_error_handlers(app)
