"""Minimal Solana JSON-RPC client over the shared aiohttp wrapper."""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any

import config
from trading.errors import ChainSubmitError
from utils.http_client import ResilientHttpClient

logger = logging.getLogger(__name__)

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


class SolanaRpcClient:
    def __init__(self, rpc_url: str | None = None, http: ResilientHttpClient | None = None) -> None:
        self.rpc_url = rpc_url or str(getattr(config, "SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com"))
        self._owns_http = http is None
        self._http = http or ResilientHttpClient(
            timeout_seconds=float(getattr(config, "RPC_TIMEOUT_SECONDS", 30)),
            headers={"Content-Type": "application/json"},
            source_limits={"solana_rpc": 4},
        )
        self._request_id = 0

    async def close(self) -> None:
        if self._owns_http:
            await self._http.close()

    async def call(self, method: str, params: list[Any] | None = None, *, max_attempts: int = 1) -> Any:
        self._request_id += 1
        body = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params or []}
        result = await self._http.post_json(self.rpc_url, source="solana_rpc", payload=body, max_attempts=max_attempts)
        if not result.ok:
            raise ChainSubmitError("rpc_http_error", f"{method}:{result.status or result.error}")
        data = result.data if isinstance(result.data, dict) else {}
        if data.get("error"):
            err = data["error"]
            message = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            raise ChainSubmitError("rpc_error", f"{method}:{message}")
        return data.get("result")

    async def latest_blockhash(self) -> str:
        """getLatestBlockhash with a fixed retry count and delay."""
        retries = max(1, int(getattr(config, "BLOCKHASH_RETRIES", 3)))
        delay = max(0.0, float(getattr(config, "BLOCKHASH_RETRY_DELAY_SECONDS", 1.0)))
        last_error: Exception | None = None
        for attempt in range(1, retries + 1):
            try:
                result = await self.call("getLatestBlockhash", [{"commitment": "finalized"}])
                blockhash = str(((result or {}).get("value") or {}).get("blockhash") or "")
                if blockhash:
                    return blockhash
                last_error = ChainSubmitError("blockhash_missing")
            except ChainSubmitError as exc:
                last_error = exc
            logger.warning("BLOCKHASH_RETRY attempt=%s/%s err=%s", attempt, retries, last_error)
            if attempt < retries:
                await asyncio.sleep(delay)
        raise ChainSubmitError("blockhash_unavailable", str(last_error))

    async def send_raw_transaction(self, raw: bytes) -> str:
        encoded = base64.b64encode(raw).decode("ascii")
        signature = await self.call(
            "sendTransaction",
            [encoded, {"encoding": "base64", "skipPreflight": False, "preflightCommitment": "confirmed"}],
        )
        if not signature:
            raise ChainSubmitError("send_no_signature")
        logger.info("TX_SENT signature=%s", signature)
        return str(signature)

    async def confirm_transaction(self, signature: str, *, timeout_seconds: float | None = None) -> str:
        """Poll signature status until the configured commitment is reached."""
        timeout = float(timeout_seconds or getattr(config, "TX_CONFIRM_TIMEOUT_SECONDS", 60))
        poll = max(0.1, float(getattr(config, "TX_CONFIRM_POLL_SECONDS", 1.5)))
        wanted = _COMMITMENT_RANK.get(str(getattr(config, "TX_CONFIRM_COMMITMENT", "confirmed")), 1)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            try:
                result = await self.call("getSignatureStatuses", [[signature], {"searchTransactionHistory": True}])
                statuses = (result or {}).get("value") or [None]
                status = statuses[0]
                if status:
                    if status.get("err"):
                        raise ChainSubmitError("tx_failed", f"{signature}:{status['err']}")
                    level = str(status.get("confirmationStatus") or "")
                    if level in _COMMITMENT_RANK and _COMMITMENT_RANK[level] >= wanted:
                        logger.info("TX_CONFIRMED signature=%s status=%s", signature, level)
                        return level
            except ChainSubmitError as exc:
                if exc.code == "tx_failed":
                    raise
                logger.warning("TX_STATUS_CHECK error signature=%s err=%s", signature, exc)
            if loop.time() >= deadline:
                raise ChainSubmitError("tx_confirm_timeout", signature)
            await asyncio.sleep(poll)

    async def get_balance_lamports(self, address: str) -> int:
        result = await self.call("getBalance", [address], max_attempts=int(getattr(config, "HTTP_RETRY_ATTEMPTS", 3)))
        return int((result or {}).get("value", 0) or 0)
