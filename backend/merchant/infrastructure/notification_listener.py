"""Notification Listener — PostgreSQL LISTEN connection that survives transport errors.

Invariants:
    - One dedicated asyncpg connection LISTENs on every configured channel
    - Each notification is handed to the callback as (channel, payload)
    - On connection loss, connect failure or any other error the listener
      reconnects after a fixed delay; only cancellation ends it

Design Decisions:
    - Raw asyncpg instead of the SQLAlchemy pool: LISTEN needs a long-lived direct connection
    - Callback is synchronous and must not block; the dispatcher spawns tasks from it
"""

import asyncio
import logging
from typing import Awaitable, Callable, Sequence

import asyncpg

logger = logging.getLogger(__name__)

NotificationCallback = Callable[[str, str], None]


class NotificationListener:
    """Keeps a LISTEN subscription alive and forwards payloads."""

    def __init__(
        self,
        dsn: str,
        channels: Sequence[str],
        callback: NotificationCallback,
        reconnect_delay: float = 5.0,
        connect: Callable[..., Awaitable[asyncpg.Connection]] = asyncpg.connect,
    ):
        self.dsn = dsn
        self.channels = list(channels)
        self.callback = callback
        self.reconnect_delay = reconnect_delay
        self._connect = connect
        self.connected = asyncio.Event()

    async def run(self) -> None:
        while True:
            try:
                await self._listen_once()
            except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
                logger.warning(f"Listener connection error: {e}")
            except Exception:
                logger.error("Listener failed unexpectedly", exc_info=True)
            self.connected.clear()
            logger.info(
                f"Re-establishing listener in {self.reconnect_delay}s",
            )
            await asyncio.sleep(self.reconnect_delay)

    async def _listen_once(self) -> None:
        logger.info("Establishing listener connections")
        conn = await self._connect(self.dsn)
        terminated = asyncio.Event()
        conn.add_termination_listener(lambda _conn: terminated.set())
        try:
            for channel in self.channels:
                await conn.add_listener(channel, self._on_notification)
            self.connected.set()
            await terminated.wait()
            logger.warning("Listener connection closed")
        finally:
            if not conn.is_closed():
                await conn.close()

    def _on_notification(self, _conn, _pid: int, channel: str, payload: str) -> None:
        logger.info(
            f"Received notification on channel '{channel}'",
            extra={"channel": channel},
        )
        self.callback(channel, payload)
