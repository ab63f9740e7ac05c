from __future__ import annotations

import unittest

from trading.fund_ledger import FundLedger

WALLET = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"


class FundLedgerTests(unittest.TestCase):
    def test_deposit_credits_deposited_and_available(self) -> None:
        ledger = FundLedger()
        ledger.record_deposit(WALLET, 1.5)
        ledger.record_deposit(WALLET, 0.5)
        entry = ledger.balance(WALLET)
        assert entry is not None
        self.assertAlmostEqual(entry.deposited, 2.0)
        self.assertAlmostEqual(entry.available, 2.0)

    def test_non_positive_deposit_is_rejected(self) -> None:
        ledger = FundLedger()
        with self.assertRaises(ValueError):
            ledger.record_deposit(WALLET, 0)

    def test_reserve_requires_entry_and_funds(self) -> None:
        ledger = FundLedger()
        self.assertEqual(ledger.reserve(WALLET, 1.0), (False, "no_ledger_entry"))
        ledger.record_deposit(WALLET, 1.0)
        self.assertEqual(ledger.reserve(WALLET, 1.5), (False, "insufficient_funds"))
        self.assertEqual(ledger.reserve(WALLET, 1.0), (True, "ok"))
        self.assertAlmostEqual(ledger.balance(WALLET).available, 0.0)

    def test_release_never_exceeds_deposited(self) -> None:
        ledger = FundLedger()
        ledger.record_deposit(WALLET, 1.0)
        ledger.reserve(WALLET, 1.0)
        credited = ledger.release(WALLET, 5.0)
        entry = ledger.balance(WALLET)
        self.assertAlmostEqual(credited, 1.0)
        self.assertAlmostEqual(entry.available, 1.0)
        self.assertLessEqual(entry.available, entry.deposited)

    def test_release_and_record_trade_without_entry_are_noops(self) -> None:
        ledger = FundLedger()
        self.assertEqual(ledger.release(WALLET, 1.0), 0.0)
        ledger.record_trade(WALLET)
        self.assertIsNone(ledger.balance(WALLET))
        self.assertEqual(ledger.entries(), [])

    def test_record_trade_counts(self) -> None:
        ledger = FundLedger()
        ledger.record_deposit(WALLET, 1.0)
        ledger.record_trade(WALLET)
        ledger.record_trade(WALLET)
        entry = ledger.balance(WALLET)
        self.assertEqual(entry.trade_count, 2)
        self.assertIsNotNone(entry.last_trade_at)

    def test_withdraw_reduces_available_only(self) -> None:
        ledger = FundLedger()
        ledger.record_deposit(WALLET, 2.0)
        self.assertEqual(ledger.withdraw(WALLET, 3.0), (False, "insufficient_funds"))
        self.assertEqual(ledger.withdraw(WALLET, 0.5), (True, "ok"))
        entry = ledger.balance(WALLET)
        self.assertAlmostEqual(entry.available, 1.5)
        self.assertAlmostEqual(entry.deposited, 2.0)

    def test_balance_returns_a_copy(self) -> None:
        ledger = FundLedger()
        ledger.record_deposit(WALLET, 1.0)
        snapshot = ledger.balance(WALLET)
        snapshot.available = 99.0
        self.assertAlmostEqual(ledger.balance(WALLET).available, 1.0)

    def test_wallet_keys_ignore_surrounding_whitespace(self) -> None:
        ledger = FundLedger()
        ledger.record_deposit(f"  {WALLET} ", 1.0)
        self.assertIsNotNone(ledger.balance(WALLET))


if __name__ == "__main__":
    unittest.main()
