"""Custodial operating-wallet key handling and transaction signing."""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass

import base58
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import to_bytes_versioned
from solders.pubkey import Pubkey
from solders.transaction import Transaction, VersionedTransaction

import config

logger = logging.getLogger(__name__)
# solders can be chatty at DEBUG
logging.getLogger("solders").setLevel(logging.WARNING)


@dataclass
class SigningResult:
    success: bool
    signed_transaction: str = ""
    public_key: str = ""
    error: str = ""


def load_keypair(raw: str) -> Keypair:
    """Accept either a base58 secret key or a JSON byte array like `[12,34,...]`."""
    text = str(raw or "").strip()
    if not text:
        raise ValueError("empty_private_key")
    if text.startswith("[") and text.endswith("]"):
        key_bytes = bytes(int(b) for b in json.loads(text))
    else:
        key_bytes = base58.b58decode(text)
    return Keypair.from_bytes(key_bytes)


class WalletSigner:
    def __init__(self, private_key: str | None = None, keypair: Keypair | None = None) -> None:
        self._keypair: Keypair | None = keypair
        if self._keypair is None:
            raw = private_key if private_key is not None else str(getattr(config, "WALLET_PRIVATE_KEY", "") or "")
            if not raw:
                logger.warning("WALLET_INIT skipped: WALLET_PRIVATE_KEY is not set")
                return
            try:
                self._keypair = load_keypair(raw)
            except Exception as exc:
                logger.error("WALLET_INIT failed: %s", exc)
                self._keypair = None
                return
        logger.info("WALLET_INIT operating_wallet=%s", self._keypair.pubkey())

    @property
    def available(self) -> bool:
        return self._keypair is not None

    def public_key(self) -> str | None:
        if self._keypair is None:
            return None
        return str(self._keypair.pubkey())

    def pubkey(self) -> Pubkey | None:
        return self._keypair.pubkey() if self._keypair is not None else None

    def sign_transaction(self, transaction_b64: str) -> SigningResult:
        """Sign a base64 versioned transaction (order-router output) with the operating key."""
        if self._keypair is None:
            return SigningResult(success=False, error="wallet_not_initialized")
        try:
            unsigned = VersionedTransaction.from_bytes(base64.b64decode(transaction_b64))
            message = unsigned.message
            signer = self._keypair.pubkey()
            required = int(message.header.num_required_signatures)
            signer_keys = list(message.account_keys)[:required]
            if signer not in signer_keys:
                return SigningResult(success=False, error="signer_not_required_by_transaction")
            signature = self._keypair.sign_message(to_bytes_versioned(message))
            sigs = list(unsigned.signatures)
            sigs[signer_keys.index(signer)] = signature
            signed = VersionedTransaction.populate(message, sigs)
        except Exception as exc:  # solders decode errors are not all ValueError
            logger.error("SIGN_FAIL versioned err=%s", exc)
            return SigningResult(success=False, error=f"sign_failed:{exc}")
        logger.debug("SIGN_OK versioned signer=%s", signer)
        return SigningResult(
            success=True,
            signed_transaction=base64.b64encode(bytes(signed)).decode("ascii"),
            public_key=str(signer),
        )

    def sign_legacy(self, transaction: Transaction, recent_blockhash: Hash) -> Transaction:
        """Fully sign a legacy transaction whose fee payer is the operating wallet."""
        if self._keypair is None:
            raise ValueError("wallet_not_initialized")
        transaction.sign([self._keypair], recent_blockhash)
        return transaction
