"""Periodic take-profit / stop-loss / timeout checks over open positions."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Iterable

import config
from trading.models import (
    EXIT_STOP_LOSS,
    EXIT_TAKE_PROFIT,
    EXIT_TIMEOUT,
    SIDE_SELL,
    Position,
    utc_now,
)

if TYPE_CHECKING:
    from monitor.price_feed import JupiterPriceFeed
    from trading.exit_controller import ExitReport, ExitRetryController

logger = logging.getLogger(__name__)


def evaluate_exit(position: Position, price: float, now: datetime) -> str | None:
    """First matching trigger in priority order take-profit, stop-loss, timeout."""
    if not position.is_open:
        return None
    if position.side == SIDE_SELL:
        hit_tp = price <= position.take_profit_price
        hit_sl = price >= position.stop_loss_price
    else:
        hit_tp = price >= position.take_profit_price
        hit_sl = price <= position.stop_loss_price
    if hit_tp:
        return EXIT_TAKE_PROFIT
    if hit_sl:
        return EXIT_STOP_LOSS
    if now >= position.auto_exit_at:
        return EXIT_TIMEOUT
    return None


class PositionMonitor:
    def __init__(
        self,
        positions_source: Callable[[], Iterable[Position]],
        prices: "JupiterPriceFeed",
        exits: "ExitRetryController",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._positions_source = positions_source
        self.prices = prices
        self.exits = exits
        self._clock = clock
        self._running = False
        self._task: asyncio.Task | None = None
        self._exit_tasks: set[asyncio.Task] = set()
        self._pending: set[str] = set()
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        interval = float(getattr(config, "POSITION_MONITOR_INTERVAL_SECONDS", 15))
        self._task = asyncio.create_task(self._loop(interval))
        logger.info("POSITION_MONITOR started interval=%ss", interval)

    async def stop(self) -> None:
        self._running = False
        tasks = [t for t in [self._task, *self._exit_tasks] if t is not None and not t.done()]
        self._task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.debug("Monitor task stopped with error", exc_info=True)
        self._exit_tasks.clear()
        self._pending.clear()

    async def _loop(self, interval: float) -> None:
        while self._running:
            try:
                await self.tick()
            except Exception:
                logger.exception("Position monitor tick error")
            await asyncio.sleep(interval)

    async def tick(self, *, wait_exits: bool = False) -> list["ExitReport"]:
        """One pass: single batched price lookup, then hand triggered positions to the exit ladder."""
        self.ticks += 1
        open_positions = [
            p
            for p in self._positions_source()
            if p.is_open and p.id not in self._pending and not self.exits.is_exiting(p.id)
        ]
        if not open_positions:
            return []
        symbols = sorted({p.token for p in open_positions})
        quotes = await self.prices.prices(symbols)
        now = self._clock()
        triggered: list[tuple[Position, str]] = []
        for position in open_positions:
            quote = quotes.get(position.token)
            if quote is None:
                logger.debug("MONITOR_NO_PRICE position=%s token=%s", position.id, position.token)
                continue
            reason = evaluate_exit(position, quote.usd_price, now)
            if reason is None:
                continue
            logger.info(
                "EXIT_TRIGGER position=%s token=%s reason=%s price=%.10f entry=%.10f tp=%.10f sl=%.10f",
                position.id,
                position.token,
                reason,
                quote.usd_price,
                position.entry_price,
                position.take_profit_price,
                position.stop_loss_price,
            )
            triggered.append((position, reason))

        if not triggered:
            return []
        if wait_exits:
            return await self._run_exits(triggered)
        for position, _ in triggered:
            self._pending.add(position.id)
        task = asyncio.create_task(self._run_exits(triggered))
        self._exit_tasks.add(task)
        task.add_done_callback(self._exit_tasks.discard)
        return []

    async def _run_exits(self, triggered: list[tuple[Position, str]]) -> list["ExitReport"]:
        # Sequential so exits from the same tick never contend for the executor.
        reports = []
        try:
            for position, reason in triggered:
                reports.append(await self.exits.exit_position(position, reason))
        finally:
            for position, _ in triggered:
                self._pending.discard(position.id)
        return reports
