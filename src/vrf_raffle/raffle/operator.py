"""
Upkeep operator.

Periodically checks whether the raffle is eligible for a draw and, if so,
triggers it. Optionally reopens draws the oracle never answered.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from vrf_raffle.raffle.engine import RaffleEngine
from vrf_raffle.raffle.errors import DrawNotStalled, RaffleError, UpkeepNotNeeded
from vrf_raffle.raffle.models import OperatorStatus, RaffleState
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)


class UpkeepOperator:
    """Async loop that performs upkeep on a ``RaffleEngine``."""

    def __init__(self, engine: RaffleEngine, config: Optional[Dict[str, Any]] = None) -> None:
        self._engine = engine
        operator_cfg = (config or {}).get("operator", {})
        self._check_interval = float(operator_cfg.get("check_interval", 10))
        self._auto_reopen = str(operator_cfg.get("auto_reopen_stalled", "false")).lower() in ("1", "true", "yes")
        self.status = OperatorStatus()
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        if self.status.is_running:
            logger.warning("Upkeep operator already running")
            return
        self.status.is_running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(), name="raffle-upkeep")
        logger.info("Upkeep operator started (check every %ss)", self._check_interval)

    async def stop(self) -> None:
        if not self.status.is_running:
            return
        logger.info("Stopping upkeep operator")
        self.status.is_running = False
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Upkeep operator stopped")

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._check_interval)
            except asyncio.TimeoutError:
                pass

    async def run_once(self) -> Optional[int]:
        """Perform one upkeep check; returns the request id if a draw started."""
        self.status.record_check()

        # engine calls run in a worker thread: a settlement holds the engine
        # lock for the whole payout
        state = await asyncio.to_thread(self._engine.get_raffle_state)
        if self._auto_reopen and state == RaffleState.CALCULATING:
            await self._try_reopen()

        eligible, diagnostic = await asyncio.to_thread(self._engine.check_eligibility)
        if not eligible:
            logger.debug("Upkeep not needed: %s", diagnostic)
            return None

        self.status.record_draw_attempt()
        try:
            # chain oracles block until the request is mined
            request_id = await asyncio.to_thread(self._engine.trigger_draw)
        except UpkeepNotNeeded as exc:
            logger.info("Draw skipped, eligibility changed: %s", exc)
            return None
        except RaffleError as exc:
            self.status.increment_draw_failures(str(exc))
            logger.error(
                "Draw attempt failed (%s consecutive): %s",
                self.status.consecutive_draw_failures,
                exc,
            )
            return None

        self.status.reset_draw_failures()
        self.status.draws_triggered += 1
        self.status.last_request_id = request_id
        logger.info("Draw triggered, request %s", request_id)
        return request_id

    async def _try_reopen(self) -> None:
        try:
            abandoned = await asyncio.to_thread(self._engine.reopen_stalled_draw)
        except DrawNotStalled:
            return
        logger.warning("Reopened raffle after stalled request %s", abandoned)

    def get_status(self) -> Dict[str, Any]:
        status = self.status
        return {
            "status": "running" if status.is_running else "stopped",
            "checkInterval": self._check_interval,
            "autoReopenStalled": self._auto_reopen,
            "checksPerformed": status.checks_performed,
            "drawsTriggered": status.draws_triggered,
            "lastRequestId": status.last_request_id,
            "lastCheck": status.last_check.isoformat() if status.last_check else None,
            "lastDrawAttempt": status.last_draw_attempt.isoformat() if status.last_draw_attempt else None,
            "consecutiveDrawFailures": status.consecutive_draw_failures,
            "lastError": status.last_error,
        }
