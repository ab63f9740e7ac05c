"""Exit retries across an escalating slippage-tolerance ladder."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable

import config
from trading.models import EXIT_REASONS, Position
from trading.order_math import build_tolerance_ladder

if TYPE_CHECKING:
    from trading.trade_executor import TradeExecutor
    from utils.decision_journal import DecisionJournal

logger = logging.getLogger(__name__)

_REASON_TAGS = {"take-profit": "take_profit", "stop-loss": "stop_loss", "timeout": "timeout"}


@dataclass
class ExitReport:
    position_id: str
    closed: bool
    reason: str
    tolerance_bps: int = 0
    attempts: list[int] = field(default_factory=list)
    busy: bool = False
    exhausted: bool = False
    error: str = ""


class ExitRetryController:
    def __init__(
        self,
        executor: "TradeExecutor",
        journal: "DecisionJournal | None" = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.executor = executor
        self.journal = journal
        self._sleep = sleep
        self._active: set[str] = set()

    def is_exiting(self, position_id: str) -> bool:
        return position_id in self._active

    @staticmethod
    def ladder() -> list[int]:
        return build_tolerance_ladder(
            list(getattr(config, "EXIT_TOLERANCE_LADDER_BPS", []) or []),
            int(getattr(config, "EXIT_MIN_TOLERANCE_BPS", 300)),
        )

    def _record(self, position: Position, reason: str, decision: str, tolerance: int, extra: dict | None = None) -> None:
        if self.journal is None:
            return
        event = {
            "session_id": position.session_id,
            "position_id": position.id,
            "decision_stage": "trade_close" if decision in {"close", "hold"} else "exit_attempt",
            "decision": decision,
            "reason": reason,
            "symbol": position.token,
            "size_sol": position.sol_spent,
            "tolerance_bps": tolerance,
        }
        event.update(extra or {})
        self.journal.trade(event)

    async def exit_position(self, position: Position, reason: str) -> ExitReport:
        """Try each rung in order until one fills; never raises."""
        report = ExitReport(position_id=position.id, closed=False, reason=reason)
        if not position.is_open:
            report.error = "position_not_open"
            return report
        if position.id in self._active:
            report.error = "exit_in_progress"
            return report
        if reason not in EXIT_REASONS:
            logger.error("EXIT_REJECTED position=%s reason=%s unknown exit reason", position.id, reason)
            report.error = f"unknown_exit_reason:{reason}"
            return report

        self._active.add(position.id)
        try:
            rungs = self.ladder()
            delay = max(0.0, float(getattr(config, "EXIT_RETRY_DELAY_SECONDS", 3.0)))
            for index, tolerance in enumerate(rungs):
                report.attempts.append(tolerance)
                result = await self.executor.execute_exit(position, reason, tolerance)
                if result.busy:
                    logger.info("EXIT_DEFERRED position=%s reason=%s executor busy", position.id, reason)
                    report.busy = True
                    return report
                if result.ok:
                    position.close(reason, exit_ref=result.settlement_ref, tolerance_bps=result.tolerance_bps or tolerance)
                    report.closed = True
                    report.tolerance_bps = result.tolerance_bps or tolerance
                    logger.info(
                        "EXIT_CLOSED position=%s token=%s reason=%s tolerance_bps=%s attempts=%s sig=%s",
                        position.id,
                        position.token,
                        reason,
                        report.tolerance_bps,
                        len(report.attempts),
                        result.settlement_ref,
                    )
                    self._record(position, _REASON_TAGS.get(reason, reason), "close", report.tolerance_bps)
                    return report

                report.error = result.message
                logger.warning(
                    "EXIT_RETRY position=%s token=%s tolerance_bps=%s rung=%s/%s err=%s",
                    position.id,
                    position.token,
                    tolerance,
                    index + 1,
                    len(rungs),
                    result.message,
                )
                self._record(position, "exit_failed", "retry", tolerance, {"error": result.message})
                if index < len(rungs) - 1:
                    await self._sleep(delay)

            report.exhausted = True
            position.needs_attention = True
            logger.error(
                "EXIT_EXHAUSTED position=%s token=%s reason=%s ladder=%s last_err=%s",
                position.id,
                position.token,
                reason,
                rungs,
                report.error,
            )
            self._record(position, "ladder_exhausted", "hold", rungs[-1], {"error": report.error})
            return report
        except Exception as exc:
            logger.exception("EXIT_CONTROLLER_ERROR position=%s", position.id)
            report.error = f"unexpected_error:{exc}"
            return report
        finally:
            self._active.discard(position.id)
