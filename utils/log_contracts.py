"""Stable log contracts for trade and session decision rows."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone
from typing import Any

LOG_SCHEMA_VERSION = "2026-10-01.v1"

SCHEMA_TRADE_DECISION = "trade_decision.v1"
SCHEMA_SESSION_EVENT = "session_event.v1"

_STAGE_PREFIX: dict[str, str] = {
    "signal": "SIGNAL",
    "trade_open": "EXEC",
    "trade_close": "EXIT",
    "exit_attempt": "EXIT",
    "session": "SESSION",
    "unknown": "UNKNOWN",
}

_REASON_CODE_OVERRIDES: dict[str, str] = {
    "entry_filled": "EXEC_ENTRY_FILLED",
    "entry_unconfirmed": "EXEC_ENTRY_UNCONFIRMED",
    "entry_failed": "EXEC_ENTRY_FAILED",
    "busy": "EXEC_BUSY_SKIP",
    "no_signal": "SIGNAL_NONE_ELIGIBLE",
    "take_profit": "EXIT_TAKE_PROFIT",
    "stop_loss": "EXIT_STOP_LOSS",
    "timeout": "EXIT_TIMEOUT",
    "exit_failed": "EXIT_RUNG_FAILED",
    "ladder_exhausted": "EXIT_LADDER_EXHAUSTED",
    "quota_reached": "SESSION_QUOTA_REACHED",
    "size_below_minimum": "SESSION_SIZE_BELOW_MINIMUM",
    "stopped_by_user": "SESSION_STOPPED",
    "deposit_failed": "SESSION_DEPOSIT_FAILED",
}

REASON_CODE_TAXONOMY: dict[str, dict[str, str]] = {
    "EXEC_ENTRY_FILLED": {"severity": "INFO", "category": "execute", "title": "Entry order filled"},
    "EXEC_ENTRY_UNCONFIRMED": {
        "severity": "WARN",
        "category": "execute",
        "title": "Entry recorded without settlement confirmation",
    },
    "EXEC_ENTRY_FAILED": {"severity": "WARN", "category": "execute", "title": "Entry order failed"},
    "EXEC_BUSY_SKIP": {"severity": "INFO", "category": "execute", "title": "Executor busy, attempt skipped"},
    "SIGNAL_NONE_ELIGIBLE": {"severity": "INFO", "category": "signal", "title": "No eligible signal"},
    "EXIT_TAKE_PROFIT": {"severity": "INFO", "category": "exit", "title": "Closed by take profit"},
    "EXIT_STOP_LOSS": {"severity": "WARN", "category": "exit", "title": "Closed by stop loss"},
    "EXIT_TIMEOUT": {"severity": "INFO", "category": "exit", "title": "Closed by timeout"},
    "EXIT_RUNG_FAILED": {"severity": "INFO", "category": "exit", "title": "Exit attempt failed at tolerance"},
    "EXIT_LADDER_EXHAUSTED": {
        "severity": "ERROR",
        "category": "exit",
        "title": "All exit tolerances failed, position needs attention",
    },
    "SESSION_QUOTA_REACHED": {"severity": "INFO", "category": "session", "title": "Trade quota reached"},
    "SESSION_SIZE_BELOW_MINIMUM": {"severity": "INFO", "category": "session", "title": "Remaining size too small"},
    "SESSION_STOPPED": {"severity": "INFO", "category": "session", "title": "Session stopped by user"},
    "SESSION_DEPOSIT_FAILED": {"severity": "WARN", "category": "session", "title": "Funding deposit failed"},
    "SESSION_RESERVATION_FAILED": {"severity": "ERROR", "category": "session", "title": "Deposited funds could not be reserved"},
    "SESSION_CONFIRMATION_FAILED": {"severity": "ERROR", "category": "session", "title": "Deposit confirmation raised"},
}


def _num(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _event_ts(payload: dict[str, Any]) -> float:
    """Epoch seconds for a row: numeric ``ts`` wins, then an ISO ``timestamp``, then now."""
    value = payload.get("ts", payload.get("timestamp"))
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    text = str(value or "").strip()
    if text:
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.timestamp()
    return datetime.now(timezone.utc).timestamp()


def _slug(value: Any) -> str:
    return "_".join(re.findall(r"[a-z0-9]+", str(value or "").lower()))


def _code_token(value: Any) -> str:
    return _slug(value).upper() or "UNKNOWN"


def reason_code_for_event(*, reason: Any, decision_stage: Any = "", decision: Any = "") -> str:
    prefix = _STAGE_PREFIX.get(_slug(decision_stage) or "unknown", "UNKNOWN")
    key = _slug(reason)
    if key:
        return _REASON_CODE_OVERRIDES.get(key) or f"{prefix}_{_code_token(key)}"
    fallback = _slug(decision)
    return f"{prefix}_{_code_token(fallback)}" if fallback else "UNKNOWN"


def reason_code_meta(code: str) -> dict[str, str]:
    key = _code_token(code)
    known = REASON_CODE_TAXONOMY.get(key)
    if known:
        return dict(known)
    return {"severity": "INFO", "category": "unknown", "title": key.replace("_", " ").title()}


def _short_hash(*parts: Any) -> str:
    joined = "|".join(str(p or "").strip() for p in parts)
    return hashlib.sha1(joined.encode("utf-8", errors="ignore")).hexdigest()[:20]


_DECISION_ID_FIELDS = ("trace_id", "position_id", "decision_stage", "decision", "reason", "symbol")


def stamp_event(
    event: dict[str, Any],
    *,
    schema_name: str,
    event_type: str,
    run_tag: str = "",
) -> dict[str, Any]:
    """Copy ``event`` and add the envelope every journal row shares.

    Rows of one session share a ``trace_id`` (the session id); ``decision_id`` is
    deterministic over the row's identifying fields so replays dedupe cleanly.
    """
    payload = dict(event or {})
    ts = _event_ts(payload)
    payload["ts"] = ts
    payload["timestamp"] = str(payload.get("timestamp") or datetime.fromtimestamp(ts, tz=timezone.utc).isoformat())
    payload.setdefault("schema_version", LOG_SCHEMA_VERSION)
    payload.setdefault("schema_name", schema_name)
    payload.setdefault("event_type", str(event_type or "event"))
    if run_tag:
        payload.setdefault("run_tag", str(run_tag))
    payload["trace_id"] = str(
        payload.get("trace_id")
        or payload.get("session_id")
        or f"tr_{_short_hash(str(payload.get('symbol', '')).upper(), f'{ts:.6f}')}"
    ).strip()
    payload["position_id"] = str(payload.get("position_id", "") or "")
    if not str(payload.get("decision_id", "") or "").strip():
        fields = [payload.get(name, "") for name in _DECISION_ID_FIELDS]
        payload["decision_id"] = "dec_" + _short_hash(payload.get("run_tag", ""), *fields, f"{ts:.6f}")
    return payload


def _apply_reason(payload: dict[str, Any]) -> None:
    payload["reason_code"] = str(
        payload.get("reason_code", "")
        or reason_code_for_event(
            reason=payload.get("reason", ""),
            decision_stage=payload.get("decision_stage", ""),
            decision=payload.get("decision", ""),
        )
    ).strip().upper()
    meta = reason_code_meta(payload["reason_code"])
    payload["reason_severity"] = str(payload.get("reason_severity", meta.get("severity", "INFO")) or "INFO")
    payload["reason_category"] = str(payload.get("reason_category", meta.get("category", "unknown")) or "unknown")


def trade_decision_event(event: dict[str, Any], *, run_tag: str = "") -> dict[str, Any]:
    payload = stamp_event(
        event,
        schema_name=SCHEMA_TRADE_DECISION,
        event_type=str((event or {}).get("event_type", "trade_decision")),
        run_tag=run_tag,
    )
    payload.setdefault("session_id", "")
    payload.setdefault("decision_stage", "unknown")
    payload.setdefault("decision", "unknown")
    payload["reason"] = str(payload.get("reason", "") or "")
    payload["symbol"] = str(payload.get("symbol", "N/A") or "N/A")
    payload["size_sol"] = _num(payload.get("size_sol", 0.0))
    payload["price_usd"] = _num(payload.get("price_usd", 0.0))
    payload["tolerance_bps"] = int(_num(payload.get("tolerance_bps", 0)))
    _apply_reason(payload)
    return payload


def session_event(event: dict[str, Any], *, run_tag: str = "") -> dict[str, Any]:
    payload = stamp_event(
        event,
        schema_name=SCHEMA_SESSION_EVENT,
        event_type=str((event or {}).get("event_type", "session_event")),
        run_tag=run_tag,
    )
    payload["decision_stage"] = str(payload.get("decision_stage", "session") or "session")
    payload.setdefault("decision", "transition")
    payload["reason"] = str(payload.get("reason", "") or "")
    payload["state_from"] = str(payload.get("state_from", "") or "")
    payload["state_to"] = str(payload.get("state_to", "") or "")
    payload["remaining_sol"] = _num(payload.get("remaining_sol", 0.0))
    _apply_reason(payload)
    return payload
