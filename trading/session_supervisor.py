"""Session lifecycle: deposit confirmation, trading cadence, stop and completion."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import config
from trading.fund_ledger import FundLedger
from trading.models import (
    SESSION_COMPLETED,
    SESSION_FAILED,
    SESSION_PENDING_DEPOSIT,
    SESSION_RUNNING,
    SESSION_STOPPED,
    ActionResult,
    Position,
    Session,
    utc_now,
)
from trading.signal_selection import select_entry_signal
from utils.addressing import normalize_address

if TYPE_CHECKING:
    from monitor.price_feed import JupiterPriceFeed
    from monitor.signal_feed import SignalFeed
    from trading.trade_executor import TradeExecutor
    from utils.decision_journal import DecisionJournal
    from wallet.deposits import DepositService

logger = logging.getLogger(__name__)

_EPS = 1e-12


class SessionStore:
    """Id-keyed registry of sessions owned by one supervisor."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def add(self, session: Session) -> None:
        self._sessions[session.id] = session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(str(session_id or "").strip())

    def all(self) -> list[Session]:
        return list(self._sessions.values())

    def open_positions(self) -> list[Position]:
        out: list[Position] = []
        for session in self._sessions.values():
            out.extend(session.open_positions())
        return out

    def __len__(self) -> int:
        return len(self._sessions)


class SessionSupervisor:
    """Owns every session's state machine and its trading cadence task.

    PENDING_DEPOSIT -> RUNNING -> COMPLETED | STOPPED | FAILED, and
    PENDING_DEPOSIT -> STOPPED | FAILED. Unused funds go back to the ledger
    exactly once per session, minus whatever is still in flight.
    """

    def __init__(
        self,
        store: SessionStore,
        ledger: FundLedger,
        funding: "DepositService",
        signals: "SignalFeed",
        prices: "JupiterPriceFeed",
        executor: "TradeExecutor",
        journal: "DecisionJournal | None" = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.funding = funding
        self.signals = signals
        self.prices = prices
        self.executor = executor
        self.journal = journal
        self._tasks: dict[str, asyncio.Task] = {}
        self._wakeups: dict[str, asyncio.Event] = {}
        self._confirming: set[str] = set()
        self._cycling: set[str] = set()

    # ---- public operations -------------------------------------------------

    async def launch(self, wallet: str, allocated: float) -> ActionResult:
        wallet = normalize_address(wallet)
        try:
            allocated = float(allocated)
        except (TypeError, ValueError):
            return ActionResult(False, "allocated must be a number", {"step": "launch_failed"})
        if not wallet:
            return ActionResult(False, "wallet is required", {"step": "launch_failed"})
        if allocated <= 0:
            return ActionResult(False, "Deposit amount must be greater than 0", {"step": "launch_failed"})

        deposit = await self.funding.create_deposit_transaction(wallet, allocated)
        if not deposit.success:
            logger.warning("SESSION_LAUNCH_FAIL wallet=%s err=%s", wallet, deposit.message)
            return ActionResult(
                False,
                f"Failed to create deposit transaction: {deposit.message}",
                {"step": "deposit_creation_failed"},
            )

        session = Session(
            wallet=wallet,
            allocated=allocated,
            max_trades=int(getattr(config, "MAX_TRADES_PER_SESSION", 5)),
        )
        self.store.add(session)
        logger.info("SESSION_LAUNCH session=%s wallet=%s allocated=%.9f", session.id, wallet, allocated)
        self._record_state(session, "", SESSION_PENDING_DEPOSIT, "launched")
        return ActionResult(
            True,
            f"Sign the deposit transaction to transfer {allocated} SOL to the operating wallet. "
            "Trading starts automatically after confirmation.",
            {
                "session_id": session.id,
                "deposit_transaction": deposit.data.get("transaction"),
                "bot_wallet_address": deposit.data.get("bot_wallet_address"),
                "next_step": "sign_and_confirm_deposit",
                "session": session.to_dict(),
            },
        )

    async def confirm_deposit(
        self,
        session_id: str,
        signed_transaction: str,
        wallet: str | None = None,
        amount: float | None = None,
    ) -> ActionResult:
        session = self.store.get(session_id)
        if session is None:
            return ActionResult(False, "Session not found")
        if session.state != SESSION_PENDING_DEPOSIT:
            return ActionResult(False, f"Session is in {session.state} status, expected {SESSION_PENDING_DEPOSIT}")
        if session.id in self._confirming:
            return ActionResult(False, "Deposit confirmation already in progress")
        if wallet and normalize_address(wallet) != session.wallet:
            return ActionResult(False, "Wallet does not match the session owner")
        if amount is not None:
            try:
                amount = float(amount)
            except (TypeError, ValueError):
                return ActionResult(False, "amount must be a number")
            if abs(amount - session.allocated) > _EPS:
                return ActionResult(False, f"Deposit amount must equal the allocated {session.allocated} SOL")
        if not signed_transaction:
            return ActionResult(False, "signed transaction is required")

        self._confirming.add(session.id)
        try:
            deposit = await self.funding.process_deposit(session.wallet, signed_transaction, session.allocated)
            if not deposit.success:
                self._fail(session, "deposit_failed", deposit.message)
                return ActionResult(False, f"Deposit failed: {deposit.message}", {"step": "deposit_failed"})
            if session.state != SESSION_PENDING_DEPOSIT:
                # Stopped while the transfer was settling; credited funds stay available.
                logger.warning("SESSION_DEPOSIT_AFTER_STOP session=%s state=%s", session.id, session.state)
                return ActionResult(
                    False,
                    f"Session moved to {session.state} while the deposit settled; funds remain available",
                    {"step": "session_not_pending", "deposit_signature": deposit.data.get("signature")},
                )

            ok, reason = self.ledger.reserve(session.wallet, session.allocated)
            if not ok:
                self._fail(session, "reservation_failed", reason)
                return ActionResult(False, f"Fund reservation failed: {reason}", {"step": "reservation_failed"})

            session.funds_reserved = True
            session.deposit_ref = str(deposit.data.get("signature") or "")
            self._transition(session, SESSION_RUNNING, "deposit_confirmed")
            self._start_cadence(session)
            return ActionResult(
                True,
                f"Deposit confirmed. Trading with {session.allocated} SOL",
                {
                    "session_id": session.id,
                    "deposit_signature": session.deposit_ref,
                    "deposit_balance": deposit.data.get("deposit_balance"),
                    "session": session.to_dict(),
                },
            )
        except Exception as exc:
            logger.exception("SESSION_CONFIRM_ERROR session=%s", session.id)
            self._fail(session, "confirmation_failed", str(exc))
            return ActionResult(False, str(exc), {"step": "confirmation_failed"})
        finally:
            self._confirming.discard(session.id)

    def stop(self, session_id: str) -> ActionResult:
        session = self.store.get(session_id)
        if session is None:
            return ActionResult(False, "Session not found")
        if session.state == SESSION_STOPPED:
            return ActionResult(
                True,
                "Session already stopped",
                {"session": session.to_dict(), "funds_returned": 0.0},
            )
        if session.is_terminal:
            return ActionResult(False, f"Session already {session.state}", {"session": session.to_dict()})

        self._transition(session, SESSION_STOPPED, "stopped_by_user")
        returned = self._release_unused(session)
        wake = self._wakeups.get(session.id)
        if wake is not None:
            wake.set()
        return ActionResult(
            True,
            f"Session stopped. Returned {returned} SOL unused funds to your deposit balance.",
            {
                "session": session.to_dict(),
                "funds_returned": returned,
                "in_flight": session.in_flight,
            },
        )

    def status(self, session_id: str) -> ActionResult:
        session = self.store.get(session_id)
        if session is None:
            return ActionResult(False, "Session not found")
        data = session.to_dict()
        data["open_positions"] = len(session.open_positions())
        return ActionResult(True, session.state, {"session": data})

    async def trade_once(self, session_id: str) -> ActionResult:
        """Run one decision step for a RUNNING session outside its cadence."""
        session = self.store.get(session_id)
        if session is None:
            return ActionResult(False, "Session not found")
        if session.state != SESSION_RUNNING:
            return ActionResult(False, f"Session is in {session.state} status, expected {SESSION_RUNNING}")
        if session.id in self._cycling:
            return ActionResult(False, "Trading cycle already in progress")
        before = session.trades_executed
        delay = await self.run_cycle(session)
        traded = session.trades_executed > before
        return ActionResult(
            True,
            "Trade executed" if traded else "No trade executed",
            {"traded": traded, "next_check_seconds": delay, "session": session.to_dict()},
        )

    def open_positions(self) -> list[Position]:
        return self.store.open_positions()

    async def shutdown(self) -> None:
        tasks = [t for t in self._tasks.values() if not t.done()]
        for event in self._wakeups.values():
            event.set()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.debug("Session task stopped with error", exc_info=True)
        self._tasks.clear()
        self._wakeups.clear()

    # ---- accounting --------------------------------------------------------

    @staticmethod
    def next_trade_size(session: Session) -> float:
        return session.remaining * float(getattr(config, "TRADE_SIZE_FRACTION", 0.9))

    def _completion_reason(self, session: Session) -> str:
        if session.trades_executed >= session.max_trades:
            return "quota_reached"
        if self.next_trade_size(session) + _EPS < float(getattr(config, "MIN_TRADE_SIZE_SOL", 0.1)):
            return "size_below_minimum"
        return ""

    def _release_unused(self, session: Session) -> float:
        if not session.funds_reserved:
            return 0.0
        amount = session.remaining - session.in_flight - session.released
        if amount <= _EPS:
            return 0.0
        session.released += amount
        self.ledger.release(session.wallet, amount)
        logger.info(
            "SESSION_FUNDS_RETURNED session=%s amount=%.9f total_released=%.9f in_flight=%.9f",
            session.id,
            amount,
            session.released,
            session.in_flight,
        )
        return amount

    def _apply_entry(self, session: Session, position: Position) -> None:
        session.positions.append(position)
        session.remaining = max(0.0, session.remaining - position.sol_spent)
        session.trades_executed += 1
        self.ledger.record_trade(session.wallet)
        logger.info(
            "SESSION_TRADE session=%s trade=%s/%s token=%s spent=%.9f remaining=%.9f",
            session.id,
            session.trades_executed,
            session.max_trades,
            position.token,
            position.sol_spent,
            session.remaining,
        )

    # ---- state transitions -------------------------------------------------

    def _record_state(self, session: Session, state_from: str, state_to: str, reason: str) -> None:
        if self.journal is None:
            return
        self.journal.session(
            {
                "session_id": session.id,
                "decision": "transition",
                "reason": reason,
                "state_from": state_from,
                "state_to": state_to,
                "remaining_sol": session.remaining,
            }
        )

    def _transition(self, session: Session, state: str, reason: str) -> None:
        previous = session.state
        session.state = state
        if session.is_terminal:
            session.ended_at = utc_now()
        logger.info("SESSION_STATE session=%s %s->%s reason=%s", session.id, previous, state, reason)
        self._record_state(session, previous, state, reason)

    def _fail(self, session: Session, reason: str, detail: str = "") -> None:
        if session.is_terminal:
            return
        session.last_error = f"{reason}:{detail}" if detail else reason
        self._transition(session, SESSION_FAILED, reason)

    def _complete(self, session: Session, reason: str) -> None:
        self._transition(session, SESSION_COMPLETED, reason)
        self._release_unused(session)

    # ---- cadence -----------------------------------------------------------

    def _start_cadence(self, session: Session) -> None:
        self._wakeups[session.id] = asyncio.Event()
        task = asyncio.create_task(self._run(session), name=f"session-{session.id}")
        task.add_done_callback(self._on_task_done)
        self._tasks[session.id] = task

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("SESSION_TASK_CRASH task=%s err=%s", task.get_name(), exc, exc_info=exc)

    async def _wait(self, session: Session, delay: float) -> None:
        event = self._wakeups.get(session.id)
        if event is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _run(self, session: Session) -> None:
        while session.state == SESSION_RUNNING:
            delay = await self.run_cycle(session)
            if session.state != SESSION_RUNNING:
                break
            if delay > 0:
                await self._wait(session, delay)
        self._tasks.pop(session.id, None)
        self._wakeups.pop(session.id, None)

    def _interval(self, session: Session) -> float:
        if session.open_positions():
            return float(getattr(config, "ENTRY_CHECK_INTERVAL_OPEN_SECONDS", 600))
        return float(getattr(config, "ENTRY_CHECK_INTERVAL_SECONDS", 120))

    async def run_cycle(self, session: Session) -> float:
        """One decision step; returns seconds until the next step (0 = immediately)."""
        if session.state != SESSION_RUNNING:
            return 0.0
        if session.id in self._cycling:
            return float(getattr(config, "ENTRY_CHECK_INTERVAL_SECONDS", 120))
        self._cycling.add(session.id)
        try:
            return await self._cycle(session)
        finally:
            self._cycling.discard(session.id)

    async def _cycle(self, session: Session) -> float:
        reason = self._completion_reason(session)
        if reason:
            self._complete(session, reason)
            return 0.0

        backoff = float(getattr(config, "TRADE_ERROR_BACKOFF_SECONDS", 120))
        try:
            signals = await self.signals.latest_signals()
        except Exception as exc:
            logger.warning("SESSION_SIGNAL_ERROR session=%s err=%s retry_in=%ss", session.id, exc, backoff)
            return backoff
        if session.state != SESSION_RUNNING:
            return 0.0

        chosen = select_entry_signal(signals, self.prices.is_supported)
        if chosen is None:
            logger.info("SESSION_NO_SIGNAL session=%s signals=%s", session.id, len(signals))
            if self.journal is not None:
                self.journal.trade(
                    {"session_id": session.id, "decision_stage": "signal", "decision": "skip", "reason": "no_signal"}
                )
            return self._interval(session)

        size = self.next_trade_size(session)
        logger.info(
            "SESSION_ENTRY session=%s token=%s direction=%s confidence=%.3f urgency=%.3f size=%.9f",
            session.id,
            chosen.token,
            chosen.direction,
            chosen.confidence,
            chosen.urgency,
            size,
        )
        session.in_flight = size
        try:
            result = await self.executor.execute_entry(session.id, chosen.token, size)
        except Exception as exc:
            logger.exception("SESSION_ENTRY_ERROR session=%s", session.id)
            result = None
            error = str(exc)
        else:
            error = result.message
        finally:
            session.in_flight = 0.0

        if result is not None and result.ok and result.position is not None:
            self._apply_entry(session, result.position)

        if session.state == SESSION_STOPPED:
            # The stop already returned everything but the in-flight slice; settle that now.
            self._release_unused(session)
            return 0.0
        if session.state != SESSION_RUNNING:
            return 0.0

        if result is None or not (result.ok or result.busy):
            logger.warning("SESSION_ENTRY_FAILED session=%s err=%s retry_in=%ss", session.id, error, backoff)
            return backoff
        if result.busy:
            return float(getattr(config, "ENTRY_CHECK_INTERVAL_SECONDS", 120))
        if self._completion_reason(session):
            return 0.0
        return self._interval(session)

    def snapshot(self) -> dict[str, Any]:
        sessions = self.store.all()
        by_state: dict[str, int] = {}
        for s in sessions:
            by_state[s.state] = by_state.get(s.state, 0) + 1
        return {
            "sessions": len(sessions),
            "by_state": by_state,
            "open_positions": len(self.store.open_positions()),
            "executor_busy": self.executor.busy,
        }
