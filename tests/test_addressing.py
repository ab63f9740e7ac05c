from __future__ import annotations

import unittest

from utils.addressing import is_valid_address, normalize_address, normalize_symbol, short_address

WALLET = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"


class AddressingTests(unittest.TestCase):
    def test_symbols_are_upper_cased(self) -> None:
        self.assertEqual(normalize_symbol(" bonk "), "BONK")
        self.assertEqual(normalize_symbol(None), "")

    def test_addresses_keep_case(self) -> None:
        self.assertEqual(normalize_address(f" {WALLET}\n"), WALLET)

    def test_base58_pubkey_validation(self) -> None:
        self.assertTrue(is_valid_address(WALLET))
        self.assertFalse(is_valid_address("0x1111111111111111111111111111111111111111"))
        self.assertFalse(is_valid_address(""))

    def test_short_address(self) -> None:
        self.assertEqual(short_address(WALLET), "9xQeWv...VFin")
        self.assertEqual(short_address("abc"), "abc")


if __name__ == "__main__":
    unittest.main()
