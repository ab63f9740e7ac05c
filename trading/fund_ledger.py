"""In-memory per-wallet ledger of deposited and available SOL."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from trading.models import utc_now
from utils.addressing import normalize_address

logger = logging.getLogger(__name__)

_EPS = 1e-12


@dataclass
class LedgerEntry:
    wallet: str
    deposited: float = 0.0
    available: float = 0.0
    trade_count: int = 0
    deposited_at: datetime | None = None
    last_trade_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "wallet": self.wallet,
            "deposited": self.deposited,
            "available": self.available,
            "trade_count": self.trade_count,
            "deposited_at": self.deposited_at.isoformat() if self.deposited_at else None,
            "last_trade_at": self.last_trade_at.isoformat() if self.last_trade_at else None,
        }


class FundLedger:
    """Tracks what each user wallet has deposited and what is still free.

    Every mutation keeps ``available <= deposited``. Missing wallets make
    ``release``/``record_trade`` no-ops and ``reserve``/``withdraw`` fail.
    """

    def __init__(self) -> None:
        self._entries: dict[str, LedgerEntry] = {}

    def _entry(self, wallet: str) -> LedgerEntry | None:
        return self._entries.get(normalize_address(wallet))

    def record_deposit(self, wallet: str, amount: float) -> LedgerEntry:
        if amount <= 0:
            raise ValueError("deposit_amount_must_be_positive")
        key = normalize_address(wallet)
        entry = self._entries.get(key)
        if entry is None:
            entry = LedgerEntry(wallet=key)
            self._entries[key] = entry
        entry.deposited += float(amount)
        entry.available += float(amount)
        entry.deposited_at = utc_now()
        logger.info(
            "LEDGER_DEPOSIT wallet=%s amount=%.9f deposited=%.9f available=%.9f",
            key,
            amount,
            entry.deposited,
            entry.available,
        )
        return entry

    def reserve(self, wallet: str, amount: float) -> tuple[bool, str]:
        entry = self._entry(wallet)
        if entry is None:
            return False, "no_ledger_entry"
        if amount < 0:
            return False, "negative_amount"
        if entry.available + _EPS < amount:
            logger.warning(
                "LEDGER_RESERVE_DENIED wallet=%s amount=%.9f available=%.9f",
                entry.wallet,
                amount,
                entry.available,
            )
            return False, "insufficient_funds"
        entry.available = max(0.0, entry.available - float(amount))
        logger.info("LEDGER_RESERVE wallet=%s amount=%.9f available=%.9f", entry.wallet, amount, entry.available)
        return True, "ok"

    def release(self, wallet: str, amount: float) -> float:
        """Return `amount` to available; returns what was actually credited."""
        entry = self._entry(wallet)
        if entry is None or amount <= 0:
            return 0.0
        before = entry.available
        entry.available = min(entry.deposited, entry.available + float(amount))
        credited = entry.available - before
        logger.info(
            "LEDGER_RELEASE wallet=%s requested=%.9f credited=%.9f available=%.9f",
            entry.wallet,
            amount,
            credited,
            entry.available,
        )
        return credited

    def record_trade(self, wallet: str) -> None:
        entry = self._entry(wallet)
        if entry is None:
            return
        entry.trade_count += 1
        entry.last_trade_at = utc_now()

    def withdraw(self, wallet: str, amount: float) -> tuple[bool, str]:
        entry = self._entry(wallet)
        if entry is None:
            return False, "no_ledger_entry"
        if amount <= 0:
            return False, "withdraw_amount_must_be_positive"
        if entry.available + _EPS < amount:
            return False, "insufficient_funds"
        entry.available = max(0.0, entry.available - float(amount))
        logger.info("LEDGER_WITHDRAW wallet=%s amount=%.9f available=%.9f", entry.wallet, amount, entry.available)
        return True, "ok"

    def balance(self, wallet: str) -> LedgerEntry | None:
        entry = self._entry(wallet)
        if entry is None:
            return None
        return LedgerEntry(**vars(entry))

    def entries(self) -> list[LedgerEntry]:
        return [LedgerEntry(**vars(e)) for e in self._entries.values()]
