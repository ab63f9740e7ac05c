"""Address and symbol normalization helpers."""

from __future__ import annotations

import base58

# Solana public keys are 32 raw bytes rendered as base58.
_PUBKEY_LEN = 32


def normalize_symbol(value: str | None) -> str:
    """Normalize token tickers for internal maps/dedup."""
    return str(value or "").strip().upper()


def normalize_address(value: str | None) -> str:
    """Strip whitespace; base58 addresses are case-sensitive so case is kept."""
    return str(value or "").strip()


def is_valid_address(value: str | None) -> bool:
    raw = normalize_address(value)
    if not raw or len(raw) > 44:
        return False
    try:
        return len(base58.b58decode(raw)) == _PUBKEY_LEN
    except ValueError:
        return False


def short_address(value: str | None) -> str:
    raw = normalize_address(value)
    if len(raw) <= 12:
        return raw
    return f"{raw[:6]}...{raw[-4:]}"
