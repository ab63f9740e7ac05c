"""JSON HTTP surface for sessions, funding and market data."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from aiohttp import web

import config
from utils.addressing import is_valid_address, normalize_address

if TYPE_CHECKING:
    from monitor.price_feed import JupiterPriceFeed
    from monitor.signal_feed import SignalFeed
    from trading.models import ActionResult
    from trading.session_supervisor import SessionSupervisor
    from wallet.deposits import DepositService

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _field(body: dict[str, Any], *names: str) -> Any:
    for name in names:
        if body.get(name) not in (None, ""):
            return body[name]
    return None


def _amount(value: Any) -> float | None:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    return amount if amount > 0 else None


def _reply(result: "ActionResult", *, fail_status: int = 400) -> web.Response:
    return web.json_response(result.to_dict(), status=200 if result.success else fail_status)


def _bad_request(message: str) -> web.Response:
    return web.json_response({"success": False, "message": message}, status=400)


class TradingApiServer:
    def __init__(
        self,
        supervisor: "SessionSupervisor",
        funding: "DepositService",
        signals: "SignalFeed",
        prices: "JupiterPriceFeed",
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        self.supervisor = supervisor
        self.funding = funding
        self.signals = signals
        self.prices = prices
        self.host = host or str(getattr(config, "API_HOST", "0.0.0.0"))
        self.port = int(port if port is not None else getattr(config, "API_PORT", 3000))
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None

    def build_app(self) -> web.Application:
        app = web.Application(middlewares=[self._auth_middleware])
        app.router.add_post("/bot/launch", self._launch)
        app.router.add_post("/bot/confirm-deposit", self._confirm_deposit)
        app.router.add_post("/bot/stop/{session_id}", self._stop)
        app.router.add_get("/bot/status/{session_id}", self._status)
        app.router.add_post("/bot/trade-once/{session_id}", self._trade_once)
        app.router.add_get("/wallet/info", self._wallet_info)
        app.router.add_get("/wallet/balance/{wallet}", self._wallet_balance)
        app.router.add_get("/wallet/deposits", self._deposits)
        app.router.add_post("/wallet/withdraw", self._withdraw)
        app.router.add_get("/signals", self._signals)
        app.router.add_get("/prices", self._prices)
        app.router.add_get("/prices/symbols", self._price_symbols)
        app.router.add_get("/health", self._health)
        return app

    async def start(self) -> None:
        self.runner = web.AppRunner(self.build_app())
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        logger.info(
            "Trading API listening on %s:%s auth=%s",
            self.host,
            self.port,
            "on" if getattr(config, "API_SECRET", "") else "off",
        )

    async def stop(self) -> None:
        if self.runner:
            await self.runner.cleanup()
            self.runner = None

    @web.middleware
    async def _auth_middleware(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        secret = str(getattr(config, "API_SECRET", "") or "")
        if secret and request.path != "/health" and request.headers.get("X-Api-Secret", "") != secret:
            return web.json_response({"success": False, "message": "unauthorized"}, status=401)
        return await handler(request)

    @staticmethod
    async def _json_body(request: web.Request) -> dict[str, Any] | None:
        try:
            payload = await request.json()
        except Exception:
            return None
        return payload if isinstance(payload, dict) else None

    # ---- sessions ----------------------------------------------------------

    async def _launch(self, request: web.Request) -> web.Response:
        body = await self._json_body(request)
        if body is None:
            return _bad_request("invalid_json")
        wallet = normalize_address(_field(body, "wallet", "user_wallet_address", "userWalletAddress"))
        if not is_valid_address(wallet):
            return _bad_request("A valid wallet address is required")
        allocated = _amount(_field(body, "allocated_sol", "allocatedSol", "amount"))
        if allocated is None:
            return _bad_request("allocated_sol must be a positive number")
        return _reply(await self.supervisor.launch(wallet, allocated))

    async def _confirm_deposit(self, request: web.Request) -> web.Response:
        body = await self._json_body(request)
        if body is None:
            return _bad_request("invalid_json")
        session_id = _field(body, "session_id", "sessionId")
        signed = _field(body, "signed_transaction", "signedTransaction")
        if not session_id or not signed:
            return _bad_request("session_id and signed_transaction are required")
        wallet = _field(body, "wallet", "user_wallet_address", "userWalletAddress")
        raw_amount = _field(body, "allocated_sol", "allocatedSol", "amount")
        amount = None
        if raw_amount is not None:
            amount = _amount(raw_amount)
            if amount is None:
                return _bad_request("allocated_sol must be a positive number")
        result = await self.supervisor.confirm_deposit(str(session_id), str(signed), wallet=wallet, amount=amount)
        return _reply(result)

    async def _stop(self, request: web.Request) -> web.Response:
        result = self.supervisor.stop(request.match_info["session_id"])
        return _reply(result, fail_status=404 if result.message == "Session not found" else 409)

    async def _status(self, request: web.Request) -> web.Response:
        return _reply(self.supervisor.status(request.match_info["session_id"]), fail_status=404)

    async def _trade_once(self, request: web.Request) -> web.Response:
        result = await self.supervisor.trade_once(request.match_info["session_id"])
        return _reply(result, fail_status=404 if result.message == "Session not found" else 409)

    # ---- wallet ------------------------------------------------------------

    async def _wallet_info(self, request: web.Request) -> web.Response:
        return _reply(await self.funding.operating_balance(), fail_status=503)

    async def _wallet_balance(self, request: web.Request) -> web.Response:
        return _reply(self.funding.balance(request.match_info["wallet"]), fail_status=404)

    async def _deposits(self, request: web.Request) -> web.Response:
        return _reply(self.funding.deposits())

    async def _withdraw(self, request: web.Request) -> web.Response:
        body = await self._json_body(request)
        if body is None:
            return _bad_request("invalid_json")
        wallet = normalize_address(_field(body, "wallet", "user_wallet_address", "userWalletAddress"))
        amount = _amount(_field(body, "amount", "amount_sol", "amountSol"))
        if not is_valid_address(wallet) or amount is None:
            return _bad_request("wallet and a positive amount are required")
        return _reply(await self.funding.withdraw(wallet, amount))

    # ---- market data -------------------------------------------------------

    async def _signals(self, request: web.Request) -> web.Response:
        try:
            signals = await self.signals.latest_signals()
        except Exception as exc:
            logger.warning("API_SIGNALS failed err=%s", exc)
            return web.json_response({"success": False, "message": str(exc)}, status=502)
        return web.json_response(
            {
                "success": True,
                "message": f"{len(signals)} signals",
                "signals": [
                    {
                        "token": s.token,
                        "direction": s.direction,
                        "confidence": s.confidence,
                        "urgency": s.urgency,
                        "price": s.price,
                        "explanation": s.explanation,
                    }
                    for s in signals
                ],
            }
        )

    async def _prices(self, request: web.Request) -> web.Response:
        raw = request.query.get("symbols", "")
        symbols = [s for s in raw.split(",") if s.strip()] or self.prices.supported_symbols()
        quotes = await self.prices.prices(symbols)
        return web.json_response(
            {
                "success": bool(quotes),
                "message": f"{len(quotes)} prices",
                "prices": {
                    symbol: {"mint": q.mint, "usd_price": q.usd_price, "decimals": q.decimals}
                    for symbol, q in quotes.items()
                },
            },
            status=200 if quotes else 502,
        )

    async def _price_symbols(self, request: web.Request) -> web.Response:
        symbols = self.prices.supported_symbols()
        return web.json_response(
            {"success": True, "message": f"{len(symbols)} symbols", "symbols": symbols, "mints": self.prices.token_mints()}
        )

    async def _health(self, request: web.Request) -> web.Response:
        return web.json_response({"success": True, "message": "ok", **self.supervisor.snapshot()})
