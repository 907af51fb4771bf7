"""Trading Session Manager — supervises the one trading-platform session of this merchant.

Invariants:
    - At most one re-login is in flight: concurrent refresh() callers await the same task
    - New credentials are propagated to the platform before any waiter resumes
    - Every platform call runs under a per-call timeout; failures surface as TradingSessionError
    - call_with_refresh() retries exactly once after a refresh; the second failure propagates
    - The resume-state blob is persisted as JSON and restored before logging on

Design Decisions:
    - asyncio.shield around the shared refresh task: a cancelled waiter never aborts
      the re-login other workflows are waiting on
    - Session-expiry notifications reuse refresh(), so they coalesce with workflow refreshes
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

from merchant.core.boundary_protocols import TradingPlatform
from merchant.core.errors import TradingSessionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TradingSessionManager:
    """Owns log-on, refresh and resume-state for one trading-platform account."""

    CONNECT_POLL_SECONDS = 5.0

    def __init__(
        self,
        platform: TradingPlatform,
        account_name: str,
        password: str = "",
        two_factor_secret: str = "",
        identity_secret: str = "",
        poll_data_dir: str | Path = ".",
        call_timeout: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.platform = platform
        self.account_name = account_name
        self._password = password
        self._two_factor_secret = two_factor_secret
        self._identity_secret = identity_secret
        self.poll_data_path = Path(poll_data_dir) / f"pollData-{account_name}.json"
        self.call_timeout = call_timeout
        self._sleep = sleep
        self._refresh_task: asyncio.Task | None = None
        self.refresh_count = 0

    # ─── Lifecycle ──────────────────────────────────────────────

    async def start(self) -> None:
        """Restore resume-state, log on and wait until the platform is connected."""
        await self._restore_poll_data()
        self.platform.on_poll_data(self.persist_poll_data)
        self.platform.on_session_expired(self.refresh)

        logger.info(f"Attempting login as '{self.account_name}'")
        await self.call(
            self.platform.log_on,
            self.account_name, self._password, self._two_factor_secret,
        )
        while not self.platform.steam_id:
            logger.info("Waiting for trading platform to be connected")
            await self._sleep(self.CONNECT_POLL_SECONDS)
        logger.info(
            "Trading platform connected",
            extra={"merchant_steam_id": self.platform.steam_id},
        )

    @property
    def merchant_steam_id(self) -> str | None:
        return self.platform.steam_id

    @property
    def is_connected(self) -> bool:
        return bool(self.platform.steam_id)

    # ─── Refresh ────────────────────────────────────────────────

    async def refresh(self) -> None:
        """Re-authenticate; concurrent callers share one in-flight refresh."""
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._do_refresh())
        await asyncio.shield(self._refresh_task)

    async def _do_refresh(self) -> None:
        logger.info("Starting new trading platform session...")
        cookies = await self.call(self.platform.web_log_on)
        self.platform.set_cookies(cookies)
        self.refresh_count += 1
        logger.info("Successfully started new trading platform session")

    # ─── Calls ──────────────────────────────────────────────────

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any) -> T:
        """Run one platform call under the per-call timeout."""
        operation = getattr(fn, "__name__", "call")
        try:
            return await asyncio.wait_for(fn(*args), timeout=self.call_timeout)
        except TradingSessionError:
            raise
        except asyncio.TimeoutError:
            raise TradingSessionError(
                f"no answer after {self.call_timeout}s", operation,
            )
        except Exception as e:
            raise TradingSessionError(str(e) or type(e).__name__, operation)

    async def call_with_refresh(
        self, fn: Callable[..., Awaitable[T]], *args: Any,
    ) -> T:
        """Run a platform call, refreshing the session and retrying once on failure."""
        try:
            return await self.call(fn, *args)
        except TradingSessionError as e:
            logger.warning(
                f"Trading platform call failed, refreshing session: {e.reason}",
                extra={"operation": e.operation},
            )
            await self.refresh()
            return await self.call(fn, *args)

    async def fetch_own_inventory(self, app_id: int, context_id: int) -> list:
        """Merchant inventory, with one refresh-and-retry."""
        return await self.call_with_refresh(
            self.platform.get_inventory,
            self.merchant_steam_id, app_id, context_id, True,
        )

    async def confirm(self, offer_id: str) -> None:
        """Mobile-confirm an offer we sent or accepted."""
        await self.call(self.platform.confirm_offer, offer_id, self._identity_secret)

    # ─── Resume state ───────────────────────────────────────────

    async def persist_poll_data(self, poll_data: dict) -> None:
        logger.info("Writing trading platform poll data")
        payload = json.dumps(poll_data)
        await asyncio.to_thread(self.poll_data_path.write_text, payload)

    async def _restore_poll_data(self) -> None:
        logger.info(f"Checking for polling data file {self.poll_data_path}")
        if not self.poll_data_path.exists():
            return
        raw = await asyncio.to_thread(self.poll_data_path.read_text)
        try:
            self.platform.poll_data = json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring unreadable polling data file {self.poll_data_path}")
            return
        logger.info("Restored trading platform poll data")
