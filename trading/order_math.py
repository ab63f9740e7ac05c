"""Pure sizing and pricing helpers for trigger orders."""

from __future__ import annotations

import math
from dataclasses import dataclass

import config
from trading.models import SIDE_SELL


@dataclass
class OrderAmounts:
    making_amount: int
    taking_amount: int
    input_units: float
    output_units: float


def _lamports_per_sol() -> int:
    return int(getattr(config, "LAMPORTS_PER_SOL", 1_000_000_000))


def sol_to_lamports(amount_sol: float) -> int:
    """Nearest whole lamport: 0.29 SOL is 290_000_000, not 289_999_999."""
    return int(round(float(amount_sol) * _lamports_per_sol()))


def to_base_units(amount: float, decimals: int) -> int:
    decimals = int(max(0, min(36, int(decimals))))
    return int(math.floor(max(0.0, float(amount)) * (10**decimals)))


def entry_amounts(size_sol: float, sol_price: float, token_price: float, token_decimals: int) -> OrderAmounts:
    """SOL -> token: spend `size_sol` and ask for the USD-equivalent token amount."""
    if sol_price <= 0 or token_price <= 0:
        raise ValueError("non_positive_price")
    tokens = float(size_sol) * float(sol_price) / float(token_price)
    return OrderAmounts(
        making_amount=int(math.floor(float(size_sol) * _lamports_per_sol())),
        taking_amount=to_base_units(tokens, token_decimals),
        input_units=float(size_sol),
        output_units=tokens,
    )


def exit_amounts(
    quantity: float,
    token_price: float,
    sol_price: float,
    token_decimals: int,
    fraction: float,
) -> OrderAmounts:
    """token -> SOL: sell `quantity * fraction` and ask for its SOL value."""
    if sol_price <= 0 or token_price <= 0:
        raise ValueError("non_positive_price")
    fraction = min(1.0, max(0.0, float(fraction)))
    sell_tokens = max(0.0, float(quantity)) * fraction
    expected_sol = sell_tokens * float(token_price) / float(sol_price)
    return OrderAmounts(
        making_amount=to_base_units(sell_tokens, token_decimals),
        taking_amount=int(math.floor(expected_sol * _lamports_per_sol())),
        input_units=sell_tokens,
        output_units=expected_sol,
    )


def exit_levels(entry_price: float, side: str, tp_percent: float, sl_percent: float) -> tuple[float, float]:
    """Return (take_profit_price, stop_loss_price) around `entry_price`."""
    tp = max(0.0, float(tp_percent)) / 100.0
    sl = max(0.0, float(sl_percent)) / 100.0
    if side == SIDE_SELL:
        return entry_price * (1.0 - tp), entry_price * (1.0 + sl)
    return entry_price * (1.0 + tp), entry_price * (1.0 - sl)


def clamp_tolerance_bps(requested: int | float | None, floor_bps: int) -> int:
    try:
        value = int(requested or 0)
    except (TypeError, ValueError):
        value = 0
    return max(int(floor_bps), value)


def build_tolerance_ladder(raw: list[int] | tuple[int, ...], floor_bps: int) -> list[int]:
    """Strictly increasing, de-duplicated rungs, none below the floor."""
    rungs = sorted({clamp_tolerance_bps(v, floor_bps) for v in (raw or [])})
    return rungs or [int(floor_bps)]
