"""Notification Dispatcher — routes trade-created notifications to the matching workflow.

Invariants:
    - Every notification is handled in its own task; a slow trade never blocks another
    - A random jitter (0-5s deposits, 0-1s withdrawals) precedes each workflow run
    - Unknown channels and unparseable payloads are logged and dropped
    - Errors escaping a workflow are logged, never propagated to the listener
"""

import asyncio
import json
import logging
import random
from typing import Awaitable, Callable

from merchant.services.deposit_workflow import DepositWorkflow
from merchant.services.withdrawal_workflow import WithdrawalWorkflow

logger = logging.getLogger(__name__)

DEPOSIT_CHANNEL = "trade_deposit_created"
WITHDRAWAL_CHANNEL = "trade_withdrawal_created"
CHANNELS = (DEPOSIT_CHANNEL, WITHDRAWAL_CHANNEL)


def parse_trade_id(payload: str) -> int:
    """Trade id from a notification payload: a JSON number/string or {"id": ...}."""
    value = json.loads(payload)
    if isinstance(value, dict):
        value = value["id"]
    return int(value)


class NotificationDispatcher:
    """Spawns one jittered workflow task per trade-created notification."""

    def __init__(
        self,
        deposits: DepositWorkflow,
        withdrawals: WithdrawalWorkflow,
        deposit_jitter: float = 5.0,
        withdrawal_jitter: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self._routes = {
            DEPOSIT_CHANNEL: (deposits, deposit_jitter),
            WITHDRAWAL_CHANNEL: (withdrawals, withdrawal_jitter),
        }
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, channel: str, payload: str) -> asyncio.Task | None:
        """Listener callback; returns the spawned task (None when dropped)."""
        route = self._routes.get(channel)
        if route is None:
            logger.warning(
                f"Unrecognized channel '{channel}', message ignored",
                extra={"channel": channel},
            )
            return None
        try:
            trade_id = parse_trade_id(payload)
        except (ValueError, KeyError, TypeError) as e:
            logger.error(
                f"Unparseable payload on '{channel}': {e}", extra={"channel": channel},
            )
            return None

        workflow, jitter = route
        task = asyncio.create_task(self._run(workflow, trade_id, jitter, channel))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, workflow, trade_id: int, jitter: float, channel: str) -> None:
        wait = self._rng.uniform(0, jitter)
        logger.info(
            f"Waiting {wait:.2f} seconds before acknowledging trade",
            extra={"trade_id": trade_id, "channel": channel},
        )
        await self._sleep(wait)
        try:
            await workflow.start(trade_id)
        except Exception:
            logger.error(
                "Workflow crashed before recording an outcome",
                exc_info=True, extra={"trade_id": trade_id, "channel": channel},
            )

    async def drain(self) -> None:
        """Wait for every spawned workflow task (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
