"""Entry point for the session trading engine."""

import asyncio
import logging
import os
import signal
from logging.handlers import RotatingFileHandler

import config
from api.server import TradingApiServer
from config import APP_LOG_FILE, LOG_DIR, LOG_LEVEL
from monitor.price_feed import JupiterPriceFeed
from monitor.signal_feed import SignalFeed
from trading.exit_controller import ExitRetryController
from trading.fund_ledger import FundLedger
from trading.live_executor import JupiterTriggerExecutor
from trading.position_monitor import PositionMonitor
from trading.session_supervisor import SessionStore, SessionSupervisor
from trading.trade_executor import TradeExecutor
from utils.decision_journal import DecisionJournal
from utils.http_client import ResilientHttpClient
from wallet.deposits import DepositService
from wallet.rpc_client import SolanaRpcClient
from wallet.signer import WalletSigner


def configure_logging() -> None:
    os.makedirs(LOG_DIR, exist_ok=True)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = RotatingFileHandler(APP_LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    # One line per request is too chatty next to the engine's own event log.
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def _merge_source_stats(*parts: dict[str, dict[str, int | float]]) -> dict[str, dict[str, int | float]]:
    merged: dict[str, dict[str, int | float]] = {}
    for block in parts:
        for source, row in (block or {}).items():
            cur = merged.setdefault(
                source,
                {"ok": 0, "fail": 0, "total": 0, "rate_limited": 0, "_latency_sum_ms": 0.0},
            )
            total = int(row.get("total", 0) or 0)
            cur["ok"] = int(cur["ok"]) + int(row.get("ok", 0))
            cur["fail"] = int(cur["fail"]) + int(row.get("fail", 0))
            cur["total"] = int(cur["total"]) + total
            cur["rate_limited"] = int(cur["rate_limited"]) + int(row.get("rate_limited", 0))
            cur["_latency_sum_ms"] = float(cur["_latency_sum_ms"]) + float(row.get("latency_avg_ms", 0.0) or 0.0) * total
    for row in merged.values():
        total = int(row["total"])
        row["error_percent"] = round((float(row["fail"]) / total * 100.0) if total > 0 else 0.0, 2)
        row["latency_avg_ms"] = round(float(row.pop("_latency_sum_ms")) / total, 2) if total > 0 else 0.0
    return merged


def _format_source_stats_brief(source_stats: dict[str, dict[str, int | float]]) -> str:
    if not source_stats:
        return "none"
    parts: list[str] = []
    for source in sorted(source_stats.keys()):
        row = source_stats.get(source) or {}
        parts.append(
            (
                f"{source}:ok={int(row.get('ok', 0))}"
                f"/fail={int(row.get('fail', 0))}"
                f"/429={int(row.get('rate_limited', 0))}"
                f"/err={float(row.get('error_percent', 0.0)):.1f}%"
                f"/avg={float(row.get('latency_avg_ms', 0.0)):.0f}ms"
            )
        )
    return "; ".join(parts)


async def status_loop(supervisor: SessionSupervisor, clients: list[ResilientHttpClient]) -> None:
    interval = float(getattr(config, "STATUS_LOG_INTERVAL_SECONDS", 300))
    while True:
        await asyncio.sleep(interval)
        snap = supervisor.snapshot()
        stats = _merge_source_stats(*(c.snapshot_stats(reset=True) for c in clients))
        logger.info(
            "Sessions %s | States: %s | Open positions: %s | Executor busy: %s | Sources: %s",
            snap["sessions"],
            ",".join(f"{k}:{v}" for k, v in sorted(snap["by_state"].items())) or "none",
            snap["open_positions"],
            snap["executor_busy"],
            _format_source_stats_brief(stats),
        )


async def run() -> None:
    market_http = ResilientHttpClient(
        timeout_seconds=float(config.JUPITER_TIMEOUT_SECONDS),
        headers={"User-Agent": "session-trader/1.0", "Accept": "application/json"},
        source_limits={"jupiter_price": 4, "jupiter_trigger": 2},
    )
    signals_http = ResilientHttpClient(
        timeout_seconds=float(config.SIGNALS_TIMEOUT_SECONDS),
        headers={"Accept": "application/json"},
    )
    rpc_http = ResilientHttpClient(
        timeout_seconds=float(config.RPC_TIMEOUT_SECONDS),
        headers={"Content-Type": "application/json"},
        source_limits={"solana_rpc": 4},
    )
    clients = [market_http, signals_http, rpc_http]

    signer = WalletSigner()
    if not signer.available:
        logger.warning("Operating wallet not loaded; launches will fail until WALLET_PRIVATE_KEY is set")
    ledger = FundLedger()
    journal = DecisionJournal()
    prices = JupiterPriceFeed(http=market_http)
    signals = SignalFeed(http=signals_http)
    funding = DepositService(signer, SolanaRpcClient(http=rpc_http), ledger)
    executor = TradeExecutor(prices, JupiterTriggerExecutor(signer, http=market_http), journal)
    exits = ExitRetryController(executor, journal)
    supervisor = SessionSupervisor(SessionStore(), ledger, funding, signals, prices, executor, journal)
    monitor = PositionMonitor(supervisor.open_positions, prices, exits)
    api = TradingApiServer(supervisor, funding, signals, prices)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support.
            pass

    await api.start()
    monitor.start()
    status_task = asyncio.create_task(status_loop(supervisor, clients))
    logger.info(
        "Engine started wallet=%s tokens=%s quota=%s size_fraction=%s",
        signer.public_key() or "missing",
        ",".join(prices.supported_symbols()),
        config.MAX_TRADES_PER_SESSION,
        config.TRADE_SIZE_FRACTION,
    )
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down")
        status_task.cancel()
        try:
            await status_task
        except asyncio.CancelledError:
            pass
        await monitor.stop()
        await supervisor.shutdown()
        await api.stop()
        for client in clients:
            await client.close()
        logger.info("Decision rows written: %s", journal.rows_written)


def main() -> None:
    configure_logging()
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
