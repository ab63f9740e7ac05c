"""Append-only JSONL sink for trade and session decision rows."""

from __future__ import annotations

import json
import logging
import os
from typing import Any

import config
from utils.log_contracts import session_event, trade_decision_event

logger = logging.getLogger(__name__)


class DecisionJournal:
    def __init__(self, path: str | None = None, *, enabled: bool | None = None) -> None:
        self.path = path or str(getattr(config, "TRADE_DECISIONS_LOG_FILE", os.path.join("logs", "trade_decisions.jsonl")))
        if enabled is None:
            enabled = bool(getattr(config, "TRADE_DECISIONS_LOG_ENABLED", True))
        self.enabled = enabled
        self.rows_written = 0

    @staticmethod
    def _run_tag() -> str:
        return str(getattr(config, "RUN_TAG", "") or "").strip()

    def trade(self, event: dict[str, Any]) -> dict[str, Any]:
        row = trade_decision_event(event, run_tag=self._run_tag())
        self._write(row)
        return row

    def session(self, event: dict[str, Any]) -> dict[str, Any]:
        row = session_event(event, run_tag=self._run_tag())
        self._write(row)
        return row

    def _write(self, row: dict[str, Any]) -> None:
        logger.debug(
            "DECISION stage=%s decision=%s code=%s trace=%s",
            row.get("decision_stage"),
            row.get("decision"),
            row.get("reason_code"),
            row.get("trace_id"),
        )
        if not self.enabled:
            return
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(row, ensure_ascii=False) + "\n")
            self.rows_written += 1
        except OSError as exc:
            logger.warning("DECISION_LOG write failed path=%s err=%s", self.path, exc)
