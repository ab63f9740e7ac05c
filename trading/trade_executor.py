"""Single-flight execution of entry and exit trigger orders."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable

import config
from trading.errors import TradingSetupError
from trading.models import (
    EXEC_OK,
    SIDE_BUY,
    ExecutionResult,
    Position,
    utc_now,
)
from trading.order_math import clamp_tolerance_bps, entry_amounts, exit_amounts, exit_levels
from utils.addressing import normalize_symbol

if TYPE_CHECKING:
    from monitor.price_feed import JupiterPriceFeed, PriceQuote
    from trading.live_executor import JupiterTriggerExecutor
    from utils.decision_journal import DecisionJournal

logger = logging.getLogger(__name__)


class TradeExecutor:
    """Turns a sizing decision into one submitted order.

    Only one order may be in flight across the whole process. A caller that
    arrives while another order is being worked gets a BUSY result straight
    away instead of queueing behind it. Neither entry point raises.
    """

    def __init__(
        self,
        prices: "JupiterPriceFeed",
        orders: "JupiterTriggerExecutor",
        journal: "DecisionJournal | None" = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.prices = prices
        self.orders = orders
        self.journal = journal
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def _record(self, event: dict) -> None:
        if self.journal is not None:
            self.journal.trade(event)

    async def _quotes(self, symbol: str) -> tuple["PriceQuote", "PriceQuote", str, str]:
        sol_symbol = str(getattr(config, "SOL_SYMBOL", "SOL"))
        token_mint = self.prices.mint_for(symbol)
        sol_mint = self.prices.mint_for(sol_symbol)
        if not token_mint or not sol_mint:
            raise TradingSetupError("missing_mint_mapping", symbol)
        quotes = await self.prices.prices([symbol, sol_symbol])
        token_quote = quotes.get(symbol)
        sol_quote = quotes.get(sol_symbol)
        if token_quote is None or sol_quote is None:
            raise TradingSetupError("price_unavailable", symbol)
        return token_quote, sol_quote, token_mint, sol_mint

    async def execute_entry(self, session_id: str, token: str, size_sol: float) -> ExecutionResult:
        if self._lock.locked():
            logger.info("EXEC_BUSY entry skipped session=%s token=%s", session_id, token)
            self._record({"session_id": session_id, "decision_stage": "trade_open", "decision": "skip", "reason": "busy", "symbol": token})
            return ExecutionResult.busy_result()
        async with self._lock:
            try:
                return await self._entry(session_id, normalize_symbol(token), float(size_sol))
            except (TradingSetupError, ValueError) as exc:
                logger.warning("ENTRY_SETUP_FAIL session=%s token=%s err=%s", session_id, token, exc)
                self._record(
                    {
                        "session_id": session_id,
                        "decision_stage": "trade_open",
                        "decision": "fail",
                        "reason": "entry_failed",
                        "symbol": token,
                        "size_sol": size_sol,
                        "error": str(exc),
                    }
                )
                return ExecutionResult.failed(str(exc))
            except Exception as exc:
                logger.exception("ENTRY_UNEXPECTED session=%s token=%s", session_id, token)
                return ExecutionResult.failed(f"unexpected_error:{exc}")

    async def _entry(self, session_id: str, symbol: str, size_sol: float) -> ExecutionResult:
        if symbol == normalize_symbol(getattr(config, "SOL_SYMBOL", "SOL")):
            raise TradingSetupError("base_asset_not_tradable", symbol)
        if size_sol <= 0:
            raise TradingSetupError("non_positive_size", str(size_sol))
        token_quote, sol_quote, token_mint, sol_mint = await self._quotes(symbol)
        amounts = entry_amounts(size_sol, sol_quote.usd_price, token_quote.usd_price, token_quote.decimals)
        logger.info(
            "ENTRY_SUBMIT session=%s token=%s size_sol=%.9f price=%.10f est_tokens=%.6f",
            session_id,
            symbol,
            size_sol,
            token_quote.usd_price,
            amounts.output_units,
        )
        outcome = await self.orders.submit_order(
            input_mint=sol_mint,
            output_mint=token_mint,
            making_amount=amounts.making_amount,
            taking_amount=amounts.taking_amount,
            slippage_bps=int(getattr(config, "ENTRY_SLIPPAGE_BPS", 0)),
        )
        treat_unconfirmed = bool(getattr(config, "ENTRY_TREAT_UNCONFIRMED_AS_FILLED", True))
        if not outcome.success and not treat_unconfirmed:
            logger.warning("ENTRY_FAILED session=%s token=%s err=%s", session_id, symbol, outcome.error)
            self._record(
                {
                    "session_id": session_id,
                    "decision_stage": "trade_open",
                    "decision": "fail",
                    "reason": "entry_failed",
                    "symbol": symbol,
                    "size_sol": size_sol,
                    "price_usd": token_quote.usd_price,
                    "error": outcome.error,
                }
            )
            return ExecutionResult.failed(outcome.error or "execution_failed", order_id=outcome.order_id)

        now = self._clock()
        tp_price, sl_price = exit_levels(
            token_quote.usd_price,
            SIDE_BUY,
            float(getattr(config, "TAKE_PROFIT_PERCENT", 3.0)),
            float(getattr(config, "STOP_LOSS_PERCENT", 5.0)),
        )
        position = Position(
            session_id=session_id,
            token=symbol,
            side=SIDE_BUY,
            entry_price=token_quote.usd_price,
            quantity=amounts.output_units,
            sol_spent=size_sol,
            take_profit_price=tp_price,
            stop_loss_price=sl_price,
            created_at=now,
            auto_exit_at=now + timedelta(seconds=int(getattr(config, "POSITION_MAX_HOLD_SECONDS", 180))),
            order_id=outcome.order_id,
            entry_ref=outcome.signature,
            entry_confirmed=outcome.success,
        )
        if outcome.success:
            logger.info(
                "ENTRY_OPEN session=%s position=%s token=%s qty=%.6f tp=%.10f sl=%.10f sig=%s",
                session_id,
                position.id,
                symbol,
                position.quantity,
                tp_price,
                sl_price,
                outcome.signature,
            )
        else:
            logger.warning(
                "ENTRY_OPEN_UNCONFIRMED session=%s position=%s token=%s err=%s",
                session_id,
                position.id,
                symbol,
                outcome.error,
            )
        self._record(
            {
                "session_id": session_id,
                "position_id": position.id,
                "decision_stage": "trade_open",
                "decision": "open",
                "reason": "entry_filled" if outcome.success else "entry_unconfirmed",
                "symbol": symbol,
                "size_sol": size_sol,
                "price_usd": token_quote.usd_price,
            }
        )
        return ExecutionResult(
            status=EXEC_OK,
            message="entry_filled" if outcome.success else f"entry_unconfirmed:{outcome.error}",
            position=position,
            settlement_ref=outcome.signature,
            order_id=outcome.order_id,
        )

    async def execute_exit(self, position: Position, reason: str, tolerance_bps: int) -> ExecutionResult:
        if self._lock.locked():
            logger.info("EXEC_BUSY exit skipped position=%s token=%s", position.id, position.token)
            return ExecutionResult.busy_result()
        async with self._lock:
            tolerance = clamp_tolerance_bps(tolerance_bps, int(getattr(config, "EXIT_MIN_TOLERANCE_BPS", 300)))
            try:
                return await self._exit(position, reason, tolerance)
            except (TradingSetupError, ValueError) as exc:
                logger.warning("EXIT_SETUP_FAIL position=%s token=%s err=%s", position.id, position.token, exc)
                return ExecutionResult.failed(str(exc), tolerance_bps=tolerance)
            except Exception as exc:
                logger.exception("EXIT_UNEXPECTED position=%s token=%s", position.id, position.token)
                return ExecutionResult.failed(f"unexpected_error:{exc}", tolerance_bps=tolerance)

    async def _exit(self, position: Position, reason: str, tolerance: int) -> ExecutionResult:
        if not position.is_open:
            return ExecutionResult.failed("position_not_open", tolerance_bps=tolerance)
        token_quote, sol_quote, token_mint, sol_mint = await self._quotes(position.token)
        amounts = exit_amounts(
            position.quantity,
            token_quote.usd_price,
            sol_quote.usd_price,
            token_quote.decimals,
            float(getattr(config, "EXIT_SIZE_FRACTION", 0.98)),
        )
        position.exit_attempts += 1
        logger.info(
            "EXIT_SUBMIT position=%s token=%s reason=%s tolerance_bps=%s sell_tokens=%.6f est_sol=%.9f",
            position.id,
            position.token,
            reason,
            tolerance,
            amounts.input_units,
            amounts.output_units,
        )
        outcome = await self.orders.submit_order(
            input_mint=token_mint,
            output_mint=sol_mint,
            making_amount=amounts.making_amount,
            taking_amount=amounts.taking_amount,
            slippage_bps=tolerance,
        )
        if not outcome.success:
            return ExecutionResult.failed(outcome.error or "execution_failed", order_id=outcome.order_id, tolerance_bps=tolerance)
        return ExecutionResult(
            status=EXEC_OK,
            message="exit_filled",
            settlement_ref=outcome.signature,
            order_id=outcome.order_id,
            tolerance_bps=tolerance,
        )
