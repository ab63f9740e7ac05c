"""USD price lookups for supported tokens via the Jupiter price API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

import config
from utils.addressing import normalize_symbol
from utils.http_client import ResilientHttpClient

logger = logging.getLogger(__name__)


@dataclass
class PriceQuote:
    symbol: str
    mint: str
    usd_price: float
    decimals: int


class JupiterPriceFeed:
    def __init__(self, http: ResilientHttpClient | None = None, token_mints: dict[str, str] | None = None) -> None:
        self._owns_http = http is None
        self._http = http or ResilientHttpClient(
            timeout_seconds=float(getattr(config, "JUPITER_TIMEOUT_SECONDS", 20)),
            headers={"User-Agent": "session-trader/1.0", "Accept": "application/json"},
            source_limits={"jupiter_price": 4},
        )
        self._token_mints = dict(token_mints) if token_mints is not None else None

    async def close(self) -> None:
        if self._owns_http:
            await self._http.close()

    def token_mints(self) -> dict[str, str]:
        if self._token_mints is not None:
            return dict(self._token_mints)
        return dict(getattr(config, "TOKEN_MINTS", {}) or {})

    def supported_symbols(self) -> list[str]:
        return sorted(self.token_mints().keys())

    def mint_for(self, symbol: str) -> str | None:
        return self.token_mints().get(normalize_symbol(symbol))

    def is_supported(self, symbol: str) -> bool:
        return self.mint_for(symbol) is not None

    async def prices(self, symbols: Iterable[str]) -> dict[str, PriceQuote]:
        """One batched request; symbols without a mint or a price are omitted."""
        mints = self.token_mints()
        wanted: dict[str, str] = {}
        for raw in symbols:
            symbol = normalize_symbol(raw)
            mint = mints.get(symbol)
            if mint:
                wanted[mint] = symbol
            else:
                logger.debug("PRICE_SKIP unsupported symbol=%s", symbol)
        if not wanted:
            return {}

        base_url = str(getattr(config, "JUPITER_PRICE_API", "https://lite-api.jup.ag/price/v3")).rstrip("/")
        result = await self._http.get_json(
            base_url,
            source="jupiter_price",
            params={"ids": ",".join(wanted.keys())},
        )
        if not result.ok or not isinstance(result.data, dict):
            logger.warning(
                "PRICE_FETCH failed status=%s err=%s symbols=%s",
                result.status,
                result.error,
                ",".join(sorted(wanted.values())),
            )
            return {}
        return self._parse(result.data, wanted)

    @staticmethod
    def _parse(payload: dict[str, Any], wanted: dict[str, str]) -> dict[str, PriceQuote]:
        # v3 answers {mint: {usdPrice, decimals, ...}}; older shapes nest under "data".
        rows = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        default_decimals = int(getattr(config, "DEFAULT_TOKEN_DECIMALS", 9))
        out: dict[str, PriceQuote] = {}
        for mint, symbol in wanted.items():
            row = rows.get(mint)
            if not isinstance(row, dict):
                continue
            try:
                price = float(row.get("usdPrice", row.get("price")) or 0.0)
            except (TypeError, ValueError):
                continue
            if price <= 0:
                continue
            try:
                decimals = int(row.get("decimals", default_decimals))
            except (TypeError, ValueError):
                decimals = default_decimals
            out[symbol] = PriceQuote(symbol=symbol, mint=mint, usd_price=price, decimals=decimals)
        return out
