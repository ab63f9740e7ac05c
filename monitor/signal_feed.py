"""Client for the external trading-signal service."""

from __future__ import annotations

import logging
from typing import Any

import config
from trading.models import DIRECTION_NEUTRAL, SIDE_BUY, SIDE_SELL, TradeSignal
from utils.addressing import normalize_symbol
from utils.http_client import ResilientHttpClient

logger = logging.getLogger(__name__)

_ACTION_TO_DIRECTION = {1: SIDE_BUY, -1: SIDE_SELL, 0: DIRECTION_NEUTRAL}


class SignalFeedError(RuntimeError):
    pass


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)


def parse_signals(payload: Any) -> list[TradeSignal]:
    """Turn the service's `{success, data: [{latest_signal: {...}}]}` body into signals."""
    if not isinstance(payload, dict) or not payload.get("success"):
        return []
    rows = payload.get("data")
    if not isinstance(rows, list):
        return []
    out: list[TradeSignal] = []
    for row in rows:
        latest = row.get("latest_signal") if isinstance(row, dict) else None
        if not isinstance(latest, dict):
            continue
        token = normalize_symbol(latest.get("token"))
        if not token:
            continue
        try:
            action = int(latest.get("action", 0))
        except (TypeError, ValueError):
            action = 0
        price_raw = latest.get("price")
        out.append(
            TradeSignal(
                token=token,
                direction=_ACTION_TO_DIRECTION.get(action, DIRECTION_NEUTRAL),
                confidence=_to_float(latest.get("confidence")),
                urgency=_to_float(latest.get("urgency")),
                price=_to_float(price_raw) if price_raw is not None else None,
                explanation=str(latest.get("explanation", "") or ""),
            )
        )
    return out


class SignalFeed:
    def __init__(self, http: ResilientHttpClient | None = None, base_url: str | None = None) -> None:
        self._owns_http = http is None
        self._http = http or ResilientHttpClient(
            timeout_seconds=float(getattr(config, "SIGNALS_TIMEOUT_SECONDS", 30)),
            headers={"Accept": "application/json"},
        )
        self._base_url = base_url

    async def close(self) -> None:
        if self._owns_http:
            await self._http.close()

    def _base(self) -> str:
        return str(self._base_url or getattr(config, "SIGNALS_BASE_URL", "http://localhost:5000")).rstrip("/")

    async def fetch_raw(self) -> Any:
        """Ask the service to recompute, then read its current signal table."""
        base = self._base()
        if bool(getattr(config, "SIGNALS_REFRESH_ENABLED", True)):
            refresh = await self._http.post_json(f"{base}/refresh", source="signals")
            if not refresh.ok:
                logger.error("SIGNALS_REFRESH failed status=%s err=%s", refresh.status, refresh.error)
                raise SignalFeedError(f"signals_refresh_failed:{refresh.status or refresh.error}")
        result = await self._http.get_json(f"{base}/signals", source="signals")
        if not result.ok:
            logger.error("SIGNALS_FETCH failed status=%s err=%s", result.status, result.error)
            raise SignalFeedError(f"signals_fetch_failed:{result.status or result.error}")
        return result.data

    async def latest_signals(self) -> list[TradeSignal]:
        signals = parse_signals(await self.fetch_raw())
        logger.info("SIGNALS_FETCHED count=%s", len(signals))
        return signals
