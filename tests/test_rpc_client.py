from __future__ import annotations

import unittest

import config
from trading.errors import ChainSubmitError
from utils.http_client import HttpResult
from wallet.rpc_client import SolanaRpcClient


class ConfigPatchMixin:
    def setUp(self) -> None:
        super().setUp()
        self._cfg_old: dict[str, object] = {}

    def patch_cfg(self, **kwargs: object) -> None:
        for key, value in kwargs.items():
            if key not in self._cfg_old:
                self._cfg_old[key] = getattr(config, key, None)
            setattr(config, key, value)

    def tearDown(self) -> None:
        for key, value in self._cfg_old.items():
            setattr(config, key, value)
        super().tearDown()


class ScriptedHttp:
    def __init__(self, results: list[HttpResult]) -> None:
        self.results = list(results)
        self.bodies: list[dict] = []

    async def post_json(self, url: str, *, source: str = "default", payload=None, **kwargs) -> HttpResult:
        self.bodies.append(payload)
        return self.results.pop(0)


def _rpc(result) -> HttpResult:
    return HttpResult(True, 200, {"jsonrpc": "2.0", "id": 1, "result": result})


class SolanaRpcClientTests(ConfigPatchMixin, unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.patch_cfg(
            BLOCKHASH_RETRIES=3,
            BLOCKHASH_RETRY_DELAY_SECONDS=0.0,
            TX_CONFIRM_POLL_SECONDS=0.1,
            TX_CONFIRM_COMMITMENT="confirmed",
        )

    async def test_blockhash_retries_then_succeeds(self) -> None:
        http = ScriptedHttp(
            [
                HttpResult(False, 503, None, "HTTP 503"),
                HttpResult(True, 200, {"error": {"code": -32005, "message": "node behind"}}),
                _rpc({"value": {"blockhash": "GHtXQBsoZHVnNFa9YevAzFr17DJjgHXk3ycTKD5xD3Zi"}}),
            ]
        )
        client = SolanaRpcClient(rpc_url="http://rpc.test", http=http)

        blockhash = await client.latest_blockhash()

        self.assertEqual(blockhash, "GHtXQBsoZHVnNFa9YevAzFr17DJjgHXk3ycTKD5xD3Zi")
        self.assertEqual([b["method"] for b in http.bodies], ["getLatestBlockhash"] * 3)

    async def test_blockhash_gives_up_after_retries(self) -> None:
        http = ScriptedHttp([HttpResult(False, 500, None, "HTTP 500") for _ in range(3)])
        client = SolanaRpcClient(rpc_url="http://rpc.test", http=http)

        with self.assertRaises(ChainSubmitError) as ctx:
            await client.latest_blockhash()
        self.assertEqual(ctx.exception.code, "blockhash_unavailable")

    async def test_send_encodes_base64(self) -> None:
        http = ScriptedHttp([_rpc("5sig")])
        client = SolanaRpcClient(rpc_url="http://rpc.test", http=http)

        signature = await client.send_raw_transaction(b"\x01\x02")

        self.assertEqual(signature, "5sig")
        params = http.bodies[0]["params"]
        self.assertEqual(params[0], "AQI=")
        self.assertEqual(params[1]["encoding"], "base64")

    async def test_confirm_polls_until_commitment(self) -> None:
        http = ScriptedHttp(
            [
                _rpc({"value": [None]}),
                _rpc({"value": [{"confirmationStatus": "processed", "err": None}]}),
                _rpc({"value": [{"confirmationStatus": "confirmed", "err": None}]}),
            ]
        )
        client = SolanaRpcClient(rpc_url="http://rpc.test", http=http)

        level = await client.confirm_transaction("5sig", timeout_seconds=5)
        self.assertEqual(level, "confirmed")
        self.assertEqual(len(http.bodies), 3)

    async def test_confirm_raises_on_chain_error(self) -> None:
        http = ScriptedHttp([_rpc({"value": [{"confirmationStatus": "confirmed", "err": {"InstructionError": [0, 1]}}]})])
        client = SolanaRpcClient(rpc_url="http://rpc.test", http=http)

        with self.assertRaises(ChainSubmitError) as ctx:
            await client.confirm_transaction("5sig", timeout_seconds=5)
        self.assertEqual(ctx.exception.code, "tx_failed")

    async def test_confirm_times_out(self) -> None:
        http = ScriptedHttp([_rpc({"value": [None]}) for _ in range(5)])
        client = SolanaRpcClient(rpc_url="http://rpc.test", http=http)

        with self.assertRaises(ChainSubmitError) as ctx:
            await client.confirm_transaction("5sig", timeout_seconds=0.05)
        self.assertEqual(ctx.exception.code, "tx_confirm_timeout")


if __name__ == "__main__":
    unittest.main()
