"""Session, position and result records shared by the trading engine."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

SESSION_PENDING_DEPOSIT = "PENDING_DEPOSIT"
SESSION_RUNNING = "RUNNING"
SESSION_COMPLETED = "COMPLETED"
SESSION_STOPPED = "STOPPED"
SESSION_FAILED = "FAILED"
TERMINAL_SESSION_STATES = frozenset({SESSION_COMPLETED, SESSION_STOPPED, SESSION_FAILED})

POSITION_OPEN = "OPEN"
POSITION_CLOSED = "CLOSED"

SIDE_BUY = "BUY"
SIDE_SELL = "SELL"
DIRECTION_NEUTRAL = "NEUTRAL"

EXIT_TAKE_PROFIT = "take-profit"
EXIT_STOP_LOSS = "stop-loss"
EXIT_TIMEOUT = "timeout"
EXIT_REASONS = (EXIT_TAKE_PROFIT, EXIT_STOP_LOSS, EXIT_TIMEOUT)

EXEC_OK = "OK"
EXEC_FAILED = "FAILED"
EXEC_BUSY = "BUSY"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class TradeSignal:
    token: str
    direction: str
    confidence: float
    urgency: float
    price: float | None = None
    explanation: str = ""


@dataclass
class Position:
    token: str
    side: str
    entry_price: float
    quantity: float
    sol_spent: float
    take_profit_price: float
    stop_loss_price: float
    auto_exit_at: datetime
    session_id: str = ""
    id: str = field(default_factory=lambda: new_id("pos"))
    status: str = POSITION_OPEN
    created_at: datetime = field(default_factory=utc_now)
    order_id: str = ""
    entry_ref: str = ""
    entry_confirmed: bool = True
    exit_reason: str = ""
    exit_ref: str = ""
    exit_tolerance_bps: int = 0
    exit_attempts: int = 0
    needs_attention: bool = False
    closed_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status == POSITION_OPEN

    def close(self, reason: str, *, exit_ref: str = "", tolerance_bps: int = 0) -> bool:
        """Move OPEN -> CLOSED exactly once; a closed position is never rewritten."""
        if self.status != POSITION_OPEN:
            return False
        if reason not in EXIT_REASONS:
            raise ValueError(f"unknown_exit_reason:{reason}")
        self.status = POSITION_CLOSED
        self.exit_reason = reason
        self.exit_ref = exit_ref
        self.exit_tolerance_bps = int(tolerance_bps)
        self.needs_attention = False
        self.closed_at = utc_now()
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "token": self.token,
            "side": self.side,
            "entry_price": self.entry_price,
            "quantity": self.quantity,
            "sol_spent": self.sol_spent,
            "take_profit_price": self.take_profit_price,
            "stop_loss_price": self.stop_loss_price,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "auto_exit_at": _iso(self.auto_exit_at),
            "order_id": self.order_id,
            "entry_ref": self.entry_ref,
            "entry_confirmed": self.entry_confirmed,
            "exit_reason": self.exit_reason or None,
            "exit_ref": self.exit_ref or None,
            "exit_tolerance_bps": self.exit_tolerance_bps or None,
            "exit_attempts": self.exit_attempts,
            "needs_attention": self.needs_attention,
            "closed_at": _iso(self.closed_at),
        }


@dataclass
class Session:
    wallet: str
    allocated: float
    max_trades: int
    id: str = field(default_factory=lambda: new_id("sess"))
    remaining: float = 0.0
    trades_executed: int = 0
    state: str = SESSION_PENDING_DEPOSIT
    created_at: datetime = field(default_factory=utc_now)
    positions: list[Position] = field(default_factory=list)
    funds_reserved: bool = False
    in_flight: float = 0.0
    released: float = 0.0
    deposit_ref: str = ""
    last_error: str = ""
    ended_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.remaining:
            self.remaining = float(self.allocated)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_SESSION_STATES

    def open_positions(self) -> list[Position]:
        return [p for p in self.positions if p.is_open]

    def committed(self) -> float:
        return sum(p.sol_spent for p in self.positions)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.id,
            "wallet": self.wallet,
            "state": self.state,
            "allocated": self.allocated,
            "remaining": self.remaining,
            "trades_executed": self.trades_executed,
            "max_trades": self.max_trades,
            "created_at": _iso(self.created_at),
            "ended_at": _iso(self.ended_at),
            "released": self.released,
            "deposit_ref": self.deposit_ref or None,
            "last_error": self.last_error or None,
            "positions": [p.to_dict() for p in self.positions],
        }


@dataclass
class ExecutionResult:
    status: str
    message: str = ""
    position: Position | None = None
    settlement_ref: str = ""
    order_id: str = ""
    tolerance_bps: int = 0

    @property
    def ok(self) -> bool:
        return self.status == EXEC_OK

    @property
    def busy(self) -> bool:
        return self.status == EXEC_BUSY

    @classmethod
    def failed(cls, message: str, **kwargs: Any) -> "ExecutionResult":
        return cls(status=EXEC_FAILED, message=message, **kwargs)

    @classmethod
    def busy_result(cls) -> "ExecutionResult":
        return cls(status=EXEC_BUSY, message="executor_busy")


@dataclass
class ActionResult:
    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "message": self.message}
        out.update(self.data)
        return out
