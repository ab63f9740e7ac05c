from __future__ import annotations

import base64
import importlib.util
import json
import unittest

from trading.errors import ChainSubmitError
from trading.fund_ledger import FundLedger

HAS_SOLDERS = importlib.util.find_spec("solders") is not None

if HAS_SOLDERS:
    import base58
    from solders.hash import Hash
    from solders.keypair import Keypair
    from solders.message import Message, to_bytes_versioned
    from solders.pubkey import Pubkey
    from solders.signature import Signature
    from solders.system_program import TransferParams, transfer
    from solders.transaction import Transaction, VersionedTransaction

    from wallet.deposits import DepositService
    from wallet.signer import WalletSigner, load_keypair

BLOCKHASH = "GHtXQBsoZHVnNFa9YevAzFr17DJjgHXk3ycTKD5xD3Zi"


class FakeRpc:
    def __init__(self, fail_send: bool = False) -> None:
        self.fail_send = fail_send
        self.sent: list[bytes] = []

    async def latest_blockhash(self) -> str:
        return BLOCKHASH

    async def send_raw_transaction(self, raw: bytes) -> str:
        if self.fail_send:
            raise ChainSubmitError("rpc_error", "sendTransaction:blockhash not found")
        self.sent.append(raw)
        return f"sig{len(self.sent)}"

    async def confirm_transaction(self, signature: str, *, timeout_seconds: float | None = None) -> str:
        return "confirmed"

    async def get_balance_lamports(self, address: str) -> int:
        return 2_500_000_000


@unittest.skipUnless(HAS_SOLDERS, "solders not installed")
class WalletSignerTests(unittest.TestCase):
    def test_load_keypair_accepts_base58_and_json(self) -> None:
        kp = Keypair()
        from_b58 = load_keypair(base58.b58encode(bytes(kp)).decode("ascii"))
        from_json = load_keypair(json.dumps(list(bytes(kp))))
        self.assertEqual(from_b58.pubkey(), kp.pubkey())
        self.assertEqual(from_json.pubkey(), kp.pubkey())
        with self.assertRaises(ValueError):
            load_keypair("")

    def test_missing_or_bad_key_leaves_signer_unavailable(self) -> None:
        self.assertFalse(WalletSigner(private_key="").available)
        self.assertFalse(WalletSigner(private_key="[1,2,3]").available)

    def test_signs_versioned_transaction_in_signer_slot(self) -> None:
        kp = Keypair()
        ix = transfer(TransferParams(from_pubkey=kp.pubkey(), to_pubkey=Pubkey.new_unique(), lamports=1000))
        message = Message.new_with_blockhash([ix], kp.pubkey(), Hash.from_string(BLOCKHASH))
        unsigned = VersionedTransaction.populate(message, [Signature.default()])
        signer = WalletSigner(keypair=kp)

        result = signer.sign_transaction(base64.b64encode(bytes(unsigned)).decode("ascii"))

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.public_key, str(kp.pubkey()))
        signed = VersionedTransaction.from_bytes(base64.b64decode(result.signed_transaction))
        self.assertEqual(signed.signatures[0], kp.sign_message(to_bytes_versioned(message)))

    def test_rejects_transaction_for_other_signer(self) -> None:
        other = Keypair()
        ix = transfer(TransferParams(from_pubkey=other.pubkey(), to_pubkey=Pubkey.new_unique(), lamports=1000))
        message = Message.new_with_blockhash([ix], other.pubkey(), Hash.from_string(BLOCKHASH))
        unsigned = VersionedTransaction.populate(message, [Signature.default()])

        result = WalletSigner(keypair=Keypair()).sign_transaction(base64.b64encode(bytes(unsigned)).decode("ascii"))

        self.assertFalse(result.success)
        self.assertEqual(result.error, "signer_not_required_by_transaction")

    def test_garbage_payload_fails_cleanly(self) -> None:
        result = WalletSigner(keypair=Keypair()).sign_transaction(base64.b64encode(b"junk").decode("ascii"))
        self.assertFalse(result.success)


@unittest.skipUnless(HAS_SOLDERS, "solders not installed")
class DepositServiceTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.operating = Keypair()
        self.user = Keypair()
        self.ledger = FundLedger()

    def _service(self, rpc: FakeRpc | None = None) -> "DepositService":
        return DepositService(WalletSigner(keypair=self.operating), rpc or FakeRpc(), self.ledger)

    async def test_deposit_transaction_is_unsigned_and_user_pays_fees(self) -> None:
        result = await self._service().create_deposit_transaction(str(self.user.pubkey()), 1.5)

        self.assertTrue(result.success, result.message)
        self.assertEqual(result.data["bot_wallet_address"], str(self.operating.pubkey()))
        tx = Transaction.from_bytes(base64.b64decode(result.data["transaction"]))
        self.assertEqual(tx.message.account_keys[0], self.user.pubkey())
        self.assertIn(self.operating.pubkey(), tx.message.account_keys)
        self.assertEqual(tx.signatures[0], Signature.default())

    async def test_process_deposit_credits_ledger(self) -> None:
        rpc = FakeRpc()
        signed = base64.b64encode(b"signed-bytes").decode("ascii")
        wallet = str(self.user.pubkey())

        result = await self._service(rpc).process_deposit(wallet, signed, 1.0)

        self.assertTrue(result.success)
        self.assertEqual(result.data["signature"], "sig1")
        self.assertEqual(rpc.sent, [b"signed-bytes"])
        self.assertAlmostEqual(self.ledger.balance(wallet).available, 1.0)

    async def test_failed_broadcast_leaves_ledger_untouched(self) -> None:
        wallet = str(self.user.pubkey())
        result = await self._service(FakeRpc(fail_send=True)).process_deposit(
            wallet, base64.b64encode(b"x").decode("ascii"), 1.0
        )
        self.assertFalse(result.success)
        self.assertIsNone(self.ledger.balance(wallet))

    async def test_withdraw_is_signed_by_operating_wallet(self) -> None:
        rpc = FakeRpc()
        wallet = str(self.user.pubkey())
        self.ledger.record_deposit(wallet, 2.0)

        too_much = await self._service(rpc).withdraw(wallet, 3.0)
        result = await self._service(rpc).withdraw(wallet, 0.5)

        self.assertFalse(too_much.success)
        self.assertTrue(result.success, result.message)
        tx = Transaction.from_bytes(rpc.sent[0])
        self.assertEqual(tx.message.account_keys[0], self.operating.pubkey())
        tx.verify()
        entry = self.ledger.balance(wallet)
        self.assertAlmostEqual(entry.available, 1.5)
        self.assertAlmostEqual(entry.deposited, 2.0)

    async def test_operating_balance_reports_sol(self) -> None:
        result = await self._service().operating_balance()
        self.assertTrue(result.success)
        self.assertAlmostEqual(result.data["balance_sol"], 2.5)

    def test_deposits_lists_every_ledger_entry(self) -> None:
        self.ledger.record_deposit(str(self.user.pubkey()), 0.5)
        result = self._service().deposits()
        self.assertTrue(result.success)
        self.assertEqual([row["wallet"] for row in result.data["deposits"]], [str(self.user.pubkey())])
        self.assertAlmostEqual(result.data["deposits"][0]["available"], 0.5)


if __name__ == "__main__":
    unittest.main()
