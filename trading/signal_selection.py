"""Pick the single entry candidate from a batch of external signals."""

from __future__ import annotations

from typing import Callable, Iterable

import config
from trading.models import DIRECTION_NEUTRAL, SIDE_BUY, TradeSignal
from utils.addressing import normalize_symbol

URGENCY_WEIGHT = 0.5
CONFIDENCE_WEIGHT = 0.5
BUY_BONUS = 0.01


def score_signal(signal: TradeSignal) -> float:
    score = URGENCY_WEIGHT * float(signal.urgency) + CONFIDENCE_WEIGHT * float(signal.confidence)
    if signal.direction == SIDE_BUY:
        score += BUY_BONUS
    return score


def select_entry_signal(
    signals: Iterable[TradeSignal],
    is_supported: Callable[[str], bool],
) -> TradeSignal | None:
    """Highest score wins; ties keep the earliest signal. The base asset is never a candidate."""
    base = normalize_symbol(getattr(config, "SOL_SYMBOL", "SOL"))
    best: TradeSignal | None = None
    best_score = float("-inf")
    for signal in signals:
        if signal.direction == DIRECTION_NEUTRAL:
            continue
        symbol = normalize_symbol(signal.token)
        if symbol == base or not is_supported(symbol):
            continue
        score = score_signal(signal)
        if score > best_score:
            best, best_score = signal, score
    return best
