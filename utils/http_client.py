"""Shared aiohttp client: per-source concurrency, request windows, 429 cooldown and retries."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

import aiohttp

import config

logger = logging.getLogger(__name__)

_UNLIMITED = (0, 0.0)


@dataclass
class HttpResult:
    ok: bool
    status: int
    data: Any | None
    error: str = ""


@dataclass
class HttpSourceStats:
    ok: int = 0
    fail: int = 0
    rate_limited: int = 0
    limiter_waits: int = 0
    retries: int = 0
    latency_total_ms: float = 0.0
    latency_max_ms: float = 0.0
    latency_count: int = 0

    def observe_latency(self, started: float) -> None:
        elapsed_ms = max(0.0, (time.perf_counter() - started) * 1000.0)
        self.latency_total_ms += elapsed_ms
        self.latency_count += 1
        self.latency_max_ms = max(self.latency_max_ms, elapsed_ms)

    def as_row(self) -> dict[str, int | float]:
        total = self.ok + self.fail
        return {
            "ok": self.ok,
            "fail": self.fail,
            "total": total,
            "rate_limited": self.rate_limited,
            "limiter_waits": self.limiter_waits,
            "retries": self.retries,
            "error_percent": round((self.fail / total * 100.0) if total else 0.0, 2),
            "latency_avg_ms": round(self.latency_total_ms / self.latency_count, 2) if self.latency_count else 0.0,
            "latency_max_ms": round(self.latency_max_ms, 2),
        }


@dataclass
class _SourceGate:
    """Admission control for one upstream (e.g. ``jupiter_price``)."""

    name: str
    concurrency: asyncio.Semaphore
    max_calls: int = 0
    window_seconds: float = 0.0
    stamps: deque = field(default_factory=deque)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    blocked_until: float = 0.0
    stats: HttpSourceStats = field(default_factory=HttpSourceStats)

    async def admit(self, url: str) -> None:
        pause = self.blocked_until - time.monotonic()
        if pause > 0:
            logger.debug("HTTP_COOLDOWN_WAIT source=%s wait=%.2fs url=%s", self.name, pause, url)
            await asyncio.sleep(pause)
        if self.max_calls <= 0:
            return
        while True:
            async with self.lock:
                now = time.monotonic()
                while self.stamps and self.stamps[0] <= now - self.window_seconds:
                    self.stamps.popleft()
                if len(self.stamps) < self.max_calls:
                    self.stamps.append(now)
                    return
                pause = max(0.01, self.stamps[0] + self.window_seconds - now)
            self.stats.limiter_waits += 1
            logger.debug("HTTP_RATE_WAIT source=%s wait=%.2fs max_calls=%s url=%s", self.name, pause, self.max_calls, url)
            await asyncio.sleep(pause)

    def block_after_429(self, response: aiohttp.ClientResponse) -> None:
        try:
            retry_after = max(0.0, float((response.headers or {}).get("Retry-After", "") or 0.0))
        except ValueError:
            retry_after = 0.0
        floor = max(0.0, float(getattr(config, "HTTP_429_COOLDOWN_SECONDS", 30.0) or 30.0))
        self.blocked_until = max(self.blocked_until, time.monotonic() + max(floor, retry_after))


def _backoff_seconds(attempt: int, status: int) -> float:
    base = max(0.05, float(getattr(config, "HTTP_BACKOFF_BASE_SECONDS", 0.5) or 0.5))
    cap = max(base, float(getattr(config, "HTTP_BACKOFF_MAX_SECONDS", 8.0) or 8.0))
    jitter = max(0.0, float(getattr(config, "HTTP_JITTER_SECONDS", 0.25) or 0.25))
    delay = base * (2 ** max(0, attempt - 1))
    if status == 429:
        delay += max(0.0, float(getattr(config, "HTTP_RATE_LIMIT_DELAY_SECONDS", 2.0) or 2.0))
    return max(0.01, min(cap, delay) + random.uniform(0.0, jitter))


class ResilientHttpClient:
    """aiohttp wrapper shared by the price, signal, order and RPC adapters.

    GET requests retry on 429/5xx and transport errors with exponential backoff.
    POST requests default to a single attempt: order submission and chain
    broadcasts are not idempotent, so callers opt in to retries explicitly.
    """

    def __init__(
        self,
        timeout_seconds: float,
        headers: dict[str, str] | None = None,
        source_limits: dict[str, int] | None = None,
    ) -> None:
        self._timeout = aiohttp.ClientTimeout(total=max(1.0, float(timeout_seconds)))
        self._headers = dict(headers or {})
        self._source_limits = {k.lower(): int(v) for k, v in (source_limits or {}).items()}
        self._session: aiohttp.ClientSession | None = None
        self._gates: dict[str, _SourceGate] = {}

    async def close(self) -> None:
        session, self._session = self._session, None
        if session is not None and not session.closed:
            await session.close()

    async def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            limit = max(1, int(getattr(config, "HTTP_CONNECTOR_LIMIT", 30) or 30))
            self._session = aiohttp.ClientSession(timeout=self._timeout, connector=aiohttp.TCPConnector(limit=limit))
        return self._session

    def _gate(self, source: str) -> _SourceGate:
        name = str(source or "default").strip().lower() or "default"
        gate = self._gates.get(name)
        if gate is None:
            default_limit = max(1, int(getattr(config, "HTTP_DEFAULT_CONCURRENCY", 8) or 8))
            max_calls, window = (getattr(config, "HTTP_SOURCE_RATE_LIMITS", {}) or {}).get(name, _UNLIMITED)
            gate = _SourceGate(
                name=name,
                concurrency=asyncio.Semaphore(max(1, self._source_limits.get(name, default_limit))),
                max_calls=int(max_calls),
                window_seconds=float(window),
            )
            self._gates[name] = gate
        return gate

    def snapshot_stats(self, reset: bool = False) -> dict[str, dict[str, int | float]]:
        out = {name: gate.stats.as_row() for name, gate in self._gates.items()}
        if reset:
            for gate in self._gates.values():
                gate.stats = HttpSourceStats()
        return out

    @staticmethod
    async def _read_body(response: aiohttp.ClientResponse) -> Any | None:
        try:
            return await response.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            return None

    async def get_json(
        self,
        url: str,
        *,
        source: str = "default",
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        max_attempts: int | None = None,
    ) -> HttpResult:
        attempts = max(1, int(max_attempts or int(getattr(config, "HTTP_RETRY_ATTEMPTS", 3) or 3)))
        return await self._request("GET", url, source=source, params=params, headers=headers, attempts=attempts)

    async def post_json(
        self,
        url: str,
        *,
        source: str = "default",
        payload: Any | None = None,
        headers: dict[str, str] | None = None,
        max_attempts: int = 1,
    ) -> HttpResult:
        return await self._request(
            "POST", url, source=source, json_body=payload, headers=headers, attempts=max(1, int(max_attempts))
        )

    async def _request(
        self,
        method: str,
        url: str,
        *,
        source: str,
        attempts: int,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> HttpResult:
        merged_headers = {**self._headers, **(headers or {})}
        gate = self._gate(source)
        stats = gate.stats
        for attempt in range(1, attempts + 1):
            status = 0
            last = attempt >= attempts
            await gate.admit(url)
            async with gate.concurrency:
                started = time.perf_counter()
                try:
                    session = await self._client()
                    async with session.request(
                        method, url, params=params, json=json_body, headers=merged_headers
                    ) as response:
                        stats.observe_latency(started)
                        status = int(response.status or 0)
                        if 200 <= status < 300:
                            stats.ok += 1
                            return HttpResult(ok=True, status=status, data=await response.json(content_type=None))
                        if status == 429:
                            stats.rate_limited += 1
                            gate.block_after_429(response)
                        if last or not (status == 429 or status >= 500):
                            stats.fail += 1
                            return HttpResult(
                                ok=False, status=status, data=await self._read_body(response), error=f"http_status_{status}"
                            )
                except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
                    stats.observe_latency(started)
                    if last:
                        stats.fail += 1
                        return HttpResult(ok=False, status=status, data=None, error=f"http_error:{exc}")

            stats.retries += 1
            delay = _backoff_seconds(attempt, status)
            logger.debug(
                "HTTP_RETRY method=%s source=%s attempt=%s/%s status=%s delay=%.2fs url=%s",
                method,
                gate.name,
                attempt,
                attempts,
                status,
                delay,
                url,
            )
            await asyncio.sleep(delay)

        return HttpResult(ok=False, status=0, data=None, error="http_exhausted")
