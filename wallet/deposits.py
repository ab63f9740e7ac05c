"""SOL funding transfers between user wallets and the operating wallet."""

from __future__ import annotations

import base64
import logging

from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

import config
from trading.errors import ChainSubmitError
from trading.fund_ledger import FundLedger
from trading.models import ActionResult
from trading.order_math import sol_to_lamports
from wallet.rpc_client import SolanaRpcClient
from wallet.signer import WalletSigner

logger = logging.getLogger(__name__)


class DepositService:
    """Builds funding transfers, settles them on chain and mirrors them in the ledger."""

    def __init__(self, signer: WalletSigner, rpc: SolanaRpcClient, ledger: FundLedger) -> None:
        self.signer = signer
        self.rpc = rpc
        self.ledger = ledger

    def operating_wallet(self) -> str | None:
        return self.signer.public_key()

    async def _transfer_message(self, source: Pubkey, dest: Pubkey, amount_sol: float) -> tuple[Message, Hash]:
        blockhash = Hash.from_string(await self.rpc.latest_blockhash())
        ix = transfer(TransferParams(from_pubkey=source, to_pubkey=dest, lamports=sol_to_lamports(amount_sol)))
        return Message.new_with_blockhash([ix], source, blockhash), blockhash

    async def create_deposit_transaction(self, user_wallet: str, amount_sol: float) -> ActionResult:
        """Unsigned user -> operating wallet transfer; the user is fee payer and signs it."""
        operating = self.signer.pubkey()
        if operating is None:
            return ActionResult(False, "Operating wallet not available - check WALLET_PRIVATE_KEY")
        if amount_sol <= 0:
            return ActionResult(False, "Deposit amount must be greater than 0")
        try:
            user = Pubkey.from_string(user_wallet)
            message, _ = await self._transfer_message(user, operating, amount_sol)
            unsigned = Transaction.new_unsigned(message)
        except (ValueError, ChainSubmitError) as exc:
            logger.error("DEPOSIT_TX_BUILD failed wallet=%s err=%s", user_wallet, exc)
            return ActionResult(False, f"deposit_tx_build_failed:{exc}")

        encoded = base64.b64encode(bytes(unsigned)).decode("ascii")
        logger.info("DEPOSIT_TX_BUILD wallet=%s amount=%.9f operating=%s", user_wallet, amount_sol, operating)
        return ActionResult(
            True,
            f"Deposit transaction created for {amount_sol} SOL",
            {"transaction": encoded, "bot_wallet_address": str(operating)},
        )

    async def process_deposit(self, user_wallet: str, signed_transaction: str, amount_sol: float) -> ActionResult:
        """Broadcast the user-signed transfer, wait for settlement, then credit the ledger."""
        if amount_sol <= 0:
            return ActionResult(False, "Deposit amount must be greater than 0")
        try:
            raw = base64.b64decode(signed_transaction, validate=True)
        except (ValueError, TypeError) as exc:
            return ActionResult(False, f"invalid_signed_transaction:{exc}")
        try:
            signature = await self.rpc.send_raw_transaction(raw)
            await self.rpc.confirm_transaction(signature)
        except ChainSubmitError as exc:
            logger.error("DEPOSIT_SETTLE failed wallet=%s err=%s", user_wallet, exc)
            return ActionResult(False, f"deposit_failed:{exc}")

        entry = self.ledger.record_deposit(user_wallet, amount_sol)
        return ActionResult(
            True,
            f"Deposit of {amount_sol} SOL processed successfully",
            {"signature": signature, "deposit_balance": entry.available},
        )

    async def withdraw(self, user_wallet: str, amount_sol: float) -> ActionResult:
        """Send available SOL back to the user, signed by the operating wallet."""
        entry = self.ledger.balance(user_wallet)
        if entry is None:
            return ActionResult(False, "No deposits found for this wallet")
        if amount_sol <= 0:
            return ActionResult(False, "Withdrawal amount must be greater than 0")
        if entry.available < amount_sol:
            return ActionResult(False, f"Insufficient balance. Available: {entry.available} SOL")
        operating = self.signer.pubkey()
        if operating is None:
            return ActionResult(False, "Operating wallet not available")
        try:
            user = Pubkey.from_string(user_wallet)
            message, blockhash = await self._transfer_message(operating, user, amount_sol)
            tx = self.signer.sign_legacy(Transaction.new_unsigned(message), blockhash)
            signature = await self.rpc.send_raw_transaction(bytes(tx))
            await self.rpc.confirm_transaction(signature)
        except (ValueError, ChainSubmitError) as exc:
            logger.error("WITHDRAW failed wallet=%s amount=%.9f err=%s", user_wallet, amount_sol, exc)
            return ActionResult(False, f"withdraw_failed:{exc}")

        ok, reason = self.ledger.withdraw(user_wallet, amount_sol)
        if not ok:
            # Funds already left the operating wallet; surface the ledger mismatch loudly.
            logger.error("WITHDRAW_LEDGER_MISMATCH wallet=%s amount=%.9f reason=%s", user_wallet, amount_sol, reason)
        return ActionResult(
            True,
            f"Withdrawal of {amount_sol} SOL processed successfully",
            {"signature": signature},
        )

    def balance(self, user_wallet: str) -> ActionResult:
        entry = self.ledger.balance(user_wallet)
        if entry is None:
            return ActionResult(False, "No deposits found for this wallet")
        return ActionResult(True, f"Available balance: {entry.available} SOL", {"deposit": entry.to_dict()})

    def deposits(self) -> ActionResult:
        rows = [entry.to_dict() for entry in self.ledger.entries()]
        return ActionResult(True, "All user deposits", {"deposits": rows})

    async def operating_balance(self) -> ActionResult:
        address = self.operating_wallet()
        if not address:
            return ActionResult(False, "Operating wallet not available")
        try:
            lamports = await self.rpc.get_balance_lamports(address)
        except ChainSubmitError as exc:
            return ActionResult(False, f"balance_unavailable:{exc}")
        per_sol = int(getattr(config, "LAMPORTS_PER_SOL", 1_000_000_000))
        return ActionResult(True, "ok", {"address": address, "balance_sol": lamports / per_sol})
