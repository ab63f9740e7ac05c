"""Trigger-order adapter for the Jupiter limit-order (trigger) API on Solana."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import config
from trading.errors import TradingSetupError
from utils.http_client import HttpResult, ResilientHttpClient

if TYPE_CHECKING:
    from wallet.signer import WalletSigner

logger = logging.getLogger(__name__)


@dataclass
class TriggerOrder:
    transaction: str
    request_id: str
    order_id: str


@dataclass
class ExecuteOutcome:
    success: bool
    signature: str = ""
    error: str = ""
    status: str = ""


@dataclass
class SubmitOutcome:
    order_id: str
    success: bool
    signature: str = ""
    error: str = ""


def _error_text(data: Any, fallback: str) -> str:
    if isinstance(data, dict):
        for key in ("error", "message", "cause"):
            value = data.get(key)
            if value:
                return str(value)
    return fallback


class JupiterTriggerExecutor:
    """Create, sign and execute a single trigger order.

    Create and sign problems raise ``TradingSetupError``; they mean nothing
    reached the chain. Execution problems come back as an unsuccessful
    outcome because the order may or may not have settled.
    """

    def __init__(self, signer: "WalletSigner", http: ResilientHttpClient | None = None) -> None:
        self.signer = signer
        self._owns_http = http is None
        self._http = http or ResilientHttpClient(
            timeout_seconds=float(getattr(config, "JUPITER_TIMEOUT_SECONDS", 20)),
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            source_limits={"jupiter_trigger": 2},
        )

    async def close(self) -> None:
        if self._owns_http:
            await self._http.close()

    @staticmethod
    def _base_url() -> str:
        return str(getattr(config, "JUPITER_TRIGGER_API", "https://lite-api.jup.ag/trigger/v1")).rstrip("/")

    async def create_order(
        self,
        *,
        input_mint: str,
        output_mint: str,
        maker: str,
        making_amount: int,
        taking_amount: int,
        slippage_bps: int,
    ) -> TriggerOrder:
        if making_amount <= 0 or taking_amount <= 0:
            raise TradingSetupError("order_amount_zero", f"making={making_amount} taking={taking_amount}")
        body = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "maker": maker,
            "payer": maker,
            "params": {
                "makingAmount": str(int(making_amount)),
                "takingAmount": str(int(taking_amount)),
            },
            "computeUnitPrice": "auto",
            "wrapAndUnwrapSol": True,
        }
        if slippage_bps > 0:
            body["params"]["slippageBps"] = str(int(slippage_bps))

        result: HttpResult = await self._http.post_json(
            f"{self._base_url()}/createOrder",
            source="jupiter_trigger",
            payload=body,
        )
        data = result.data if isinstance(result.data, dict) else {}
        if not result.ok:
            logger.error(
                "ORDER_CREATE failed status=%s err=%s in=%s out=%s making=%s taking=%s",
                result.status,
                _error_text(data, result.error),
                input_mint,
                output_mint,
                making_amount,
                taking_amount,
            )
            raise TradingSetupError("create_order_failed", _error_text(data, result.error))
        transaction = str(data.get("transaction") or "")
        request_id = str(data.get("requestId") or "")
        if not transaction or not request_id:
            raise TradingSetupError("create_order_incomplete", "missing transaction or requestId")
        order_id = str(data.get("order") or "")
        logger.info("ORDER_CREATED order=%s request=%s slippage_bps=%s", order_id, request_id, slippage_bps)
        return TriggerOrder(transaction=transaction, request_id=request_id, order_id=order_id)

    async def execute(self, signed_transaction: str, request_id: str) -> ExecuteOutcome:
        result = await self._http.post_json(
            f"{self._base_url()}/execute",
            source="jupiter_trigger",
            payload={"signedTransaction": signed_transaction, "requestId": request_id},
        )
        data = result.data if isinstance(result.data, dict) else {}
        if not result.ok:
            error = _error_text(data, f"HTTP {result.status}" if result.status else result.error)
            logger.error("ORDER_EXECUTE failed status=%s err=%s request=%s", result.status, error, request_id)
            return ExecuteOutcome(success=False, error=error)
        code = data.get("code")
        if code is not None and code != 0:
            error = _error_text(data, f"Code {code}")
            logger.error("ORDER_EXECUTE rejected code=%s err=%s request=%s", code, error, request_id)
            return ExecuteOutcome(success=False, error=error)
        status = str(data.get("status") or "")
        if status and status.lower() != "success":
            logger.warning("ORDER_EXECUTE status=%s request=%s", status, request_id)
        return ExecuteOutcome(success=True, signature=str(data.get("signature") or ""), status=status)

    async def submit_order(
        self,
        *,
        input_mint: str,
        output_mint: str,
        making_amount: int,
        taking_amount: int,
        slippage_bps: int,
    ) -> SubmitOutcome:
        maker = self.signer.public_key()
        if not maker:
            raise TradingSetupError("wallet_not_initialized")
        order = await self.create_order(
            input_mint=input_mint,
            output_mint=output_mint,
            maker=maker,
            making_amount=making_amount,
            taking_amount=taking_amount,
            slippage_bps=slippage_bps,
        )
        signed = self.signer.sign_transaction(order.transaction)
        if not signed.success:
            raise TradingSetupError("sign_failed", signed.error)
        outcome = await self.execute(signed.signed_transaction, order.request_id)
        return SubmitOutcome(
            order_id=order.order_id,
            success=outcome.success,
            signature=outcome.signature,
            error=outcome.error,
        )
