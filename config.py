"""Application configuration."""

import os
from pathlib import Path
from typing import Dict, List, Tuple

from dotenv import load_dotenv


def _load_dotenv_safe(dotenv_path: str | None = None, *, override: bool = False) -> None:
    """Load dotenv using UTF-8-SIG so BOM-prefixed files don't break first key parsing."""
    try:
        load_dotenv(dotenv_path=dotenv_path, override=override, encoding="utf-8-sig")
    except TypeError:
        # Older python-dotenv versions may not expose the `encoding` argument.
        load_dotenv(dotenv_path=dotenv_path, override=override)


# Load base environment first, then optional per-instance override env file.
_load_dotenv_safe()
_BOT_ENV_FILE = os.getenv("BOT_ENV_FILE", "").strip()
if _BOT_ENV_FILE:
    _bot_env_path = Path(_BOT_ENV_FILE).expanduser()
    if not _bot_env_path.is_absolute():
        _bot_env_path = (Path.cwd() / _bot_env_path).resolve()
    if not _bot_env_path.exists():
        raise FileNotFoundError(f"BOT_ENV_FILE does not exist: {_bot_env_path}")
    if not _bot_env_path.is_file():
        raise IsADirectoryError(f"BOT_ENV_FILE is not a file: {_bot_env_path}")
    try:
        _load_dotenv_safe(str(_bot_env_path), override=True)
    except (OSError, UnicodeError, ValueError) as exc:
        raise RuntimeError(f"Failed to load BOT_ENV_FILE '{_bot_env_path}': {exc}") from exc


def _parse_source_rate_limits(raw: str) -> Dict[str, Tuple[int, float]]:
    out: Dict[str, Tuple[int, float]] = {}
    for chunk in str(raw or "").split(","):
        item = chunk.strip()
        if not item or ":" not in item:
            continue
        source_part, rate_part = item.split(":", 1)
        source = source_part.strip().lower()
        if not source or "/" not in rate_part:
            continue
        count_part, window_part = rate_part.split("/", 1)
        try:
            count = max(1, int(float(count_part.strip())))
            window_seconds = max(1.0, float(window_part.strip()))
        except Exception:
            continue
        out[source] = (count, window_seconds)
    return out


def _parse_token_mints(raw: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for chunk in str(raw or "").split(","):
        item = chunk.strip()
        if not item or ":" not in item:
            continue
        symbol_part, mint_part = item.split(":", 1)
        symbol = symbol_part.strip().upper()
        mint = mint_part.strip()
        if symbol and mint:
            out[symbol] = mint
    return out


def _parse_int_list(raw: str) -> List[int]:
    out: List[int] = []
    for chunk in str(raw or "").split(","):
        item = chunk.strip()
        if not item:
            continue
        try:
            out.append(int(float(item)))
        except Exception:
            continue
    return out


RUN_TAG = os.getenv("RUN_TAG", "").strip()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")
APP_LOG_FILE = os.getenv("APP_LOG_FILE", os.path.join(LOG_DIR, "app.log"))
TRADE_DECISIONS_LOG_ENABLED = os.getenv("TRADE_DECISIONS_LOG_ENABLED", "true").lower() == "true"
TRADE_DECISIONS_LOG_FILE = os.getenv("TRADE_DECISIONS_LOG_FILE", os.path.join(LOG_DIR, "trade_decisions.jsonl"))

# Chain access and custodial operating wallet.
SOLANA_RPC_URL = os.getenv("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com")
WALLET_PRIVATE_KEY = os.getenv("WALLET_PRIVATE_KEY", "").strip()
RPC_TIMEOUT_SECONDS = max(1, int(os.getenv("RPC_TIMEOUT_SECONDS", "30")))
BLOCKHASH_RETRIES = max(1, int(os.getenv("BLOCKHASH_RETRIES", "3")))
BLOCKHASH_RETRY_DELAY_SECONDS = max(0.0, float(os.getenv("BLOCKHASH_RETRY_DELAY_SECONDS", "1.0")))
TX_CONFIRM_TIMEOUT_SECONDS = max(1, int(os.getenv("TX_CONFIRM_TIMEOUT_SECONDS", "60")))
TX_CONFIRM_POLL_SECONDS = max(0.1, float(os.getenv("TX_CONFIRM_POLL_SECONDS", "1.5")))
TX_CONFIRM_COMMITMENT = os.getenv("TX_CONFIRM_COMMITMENT", "confirmed").strip().lower()

LAMPORTS_PER_SOL = 1_000_000_000
DEFAULT_TOKEN_DECIMALS = max(0, int(os.getenv("DEFAULT_TOKEN_DECIMALS", "9")))

# External market data and order routing.
JUPITER_PRICE_API = os.getenv("JUPITER_PRICE_API", "https://lite-api.jup.ag/price/v3")
JUPITER_TRIGGER_API = os.getenv("JUPITER_TRIGGER_API", "https://lite-api.jup.ag/trigger/v1")
JUPITER_TIMEOUT_SECONDS = max(1, int(os.getenv("JUPITER_TIMEOUT_SECONDS", "20")))
SIGNALS_BASE_URL = os.getenv("SIGNALS_BASE_URL", "http://localhost:5000").rstrip("/")
SIGNALS_TIMEOUT_SECONDS = max(1, int(os.getenv("SIGNALS_TIMEOUT_SECONDS", "30")))
SIGNALS_REFRESH_ENABLED = os.getenv("SIGNALS_REFRESH_ENABLED", "true").lower() == "true"

SOL_SYMBOL = "SOL"
_DEFAULT_TOKEN_MINTS = (
    "SOL:So11111111111111111111111111111111111111112,"
    "USDC:EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v,"
    "BONK:DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263,"
    "PENGU:2zMMhcVQEXDtdE6vsFS7S7D5oUodfJHE8vd1gnBouauv,"
    "JUP:JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN,"
    "RAY:4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R,"
    "PYTH:HZ1JovNiVvGrGNiiYvEozEVgZ58xaU3RKwX8eACQBCt3,"
    "TRUMP:6p6xgHyF7AeE6TZkSmFsko444wqoP15icUSqi2jfGiPN,"
    "JTO:jtojtomepa8beP8AuQc6eXt5FriJwfFMwQx2v2f9mCL,"
    "ORCA:orcaEKTdK7LKz57vaAYr9QeNsVEPfiu6QeMU1kektZE"
)
TOKEN_MINTS = _parse_token_mints(os.getenv("TOKEN_MINTS", _DEFAULT_TOKEN_MINTS))

# Session sizing and cadence.
MAX_TRADES_PER_SESSION = max(1, int(os.getenv("MAX_TRADES_PER_SESSION", "5")))
TRADE_SIZE_FRACTION = min(1.0, max(0.01, float(os.getenv("TRADE_SIZE_FRACTION", "0.9"))))
MIN_TRADE_SIZE_SOL = max(0.0, float(os.getenv("MIN_TRADE_SIZE_SOL", "0.1")))
ENTRY_CHECK_INTERVAL_SECONDS = max(1.0, float(os.getenv("ENTRY_CHECK_INTERVAL_SECONDS", "120")))
ENTRY_CHECK_INTERVAL_OPEN_SECONDS = max(1.0, float(os.getenv("ENTRY_CHECK_INTERVAL_OPEN_SECONDS", "600")))
TRADE_ERROR_BACKOFF_SECONDS = max(1.0, float(os.getenv("TRADE_ERROR_BACKOFF_SECONDS", "120")))
ENTRY_TREAT_UNCONFIRMED_AS_FILLED = os.getenv("ENTRY_TREAT_UNCONFIRMED_AS_FILLED", "true").lower() == "true"
ENTRY_SLIPPAGE_BPS = max(0, int(os.getenv("ENTRY_SLIPPAGE_BPS", "0")))

# Position exits.
POSITION_MONITOR_INTERVAL_SECONDS = max(1.0, float(os.getenv("POSITION_MONITOR_INTERVAL_SECONDS", "15")))
TAKE_PROFIT_PERCENT = max(0.0, float(os.getenv("TAKE_PROFIT_PERCENT", "3")))
STOP_LOSS_PERCENT = min(99.0, max(0.0, float(os.getenv("STOP_LOSS_PERCENT", "5"))))
POSITION_MAX_HOLD_SECONDS = max(1, int(os.getenv("POSITION_MAX_HOLD_SECONDS", "180")))
EXIT_MIN_TOLERANCE_BPS = max(0, int(os.getenv("EXIT_MIN_TOLERANCE_BPS", "300")))
EXIT_TOLERANCE_LADDER_BPS = _parse_int_list(os.getenv("EXIT_TOLERANCE_LADDER_BPS", "300,500,700,1000,1500,2000"))
EXIT_RETRY_DELAY_SECONDS = max(0.0, float(os.getenv("EXIT_RETRY_DELAY_SECONDS", "3")))
EXIT_SIZE_FRACTION = min(1.0, max(0.01, float(os.getenv("EXIT_SIZE_FRACTION", "0.98"))))

# Public HTTP surface.
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "3000"))
API_SECRET = os.getenv("API_SECRET", "").strip()
STATUS_LOG_INTERVAL_SECONDS = max(10.0, float(os.getenv("STATUS_LOG_INTERVAL_SECONDS", "300")))

HTTP_CONNECTOR_LIMIT = max(1, int(os.getenv("HTTP_CONNECTOR_LIMIT", "30")))
HTTP_DEFAULT_CONCURRENCY = max(1, int(os.getenv("HTTP_DEFAULT_CONCURRENCY", "8")))
HTTP_RETRY_ATTEMPTS = max(1, int(os.getenv("HTTP_RETRY_ATTEMPTS", "3")))
HTTP_BACKOFF_BASE_SECONDS = max(0.05, float(os.getenv("HTTP_BACKOFF_BASE_SECONDS", "0.50")))
HTTP_BACKOFF_MAX_SECONDS = max(0.10, float(os.getenv("HTTP_BACKOFF_MAX_SECONDS", "8.00")))
HTTP_JITTER_SECONDS = max(0.0, float(os.getenv("HTTP_JITTER_SECONDS", "0.25")))
HTTP_RATE_LIMIT_DELAY_SECONDS = max(0.0, float(os.getenv("HTTP_RATE_LIMIT_DELAY_SECONDS", "2.00")))
HTTP_429_COOLDOWN_SECONDS = max(1.0, float(os.getenv("HTTP_429_COOLDOWN_SECONDS", "30")))
HTTP_SOURCE_RATE_LIMITS = _parse_source_rate_limits(
    os.getenv(
        "HTTP_SOURCE_RATE_LIMITS",
        "jupiter_price:60/60",
    )
)
