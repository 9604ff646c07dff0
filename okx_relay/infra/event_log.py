"""
Category-tagged event log used by the connection manager and dispatcher.

Every call becomes one structured JSON record on the relay logger:

    {"event": "login_ok", "category": "AUTH", ...context}

The same records land in the JSON-lines log file, which recent() reads back
newest first for the /logs endpoint.
"""

from __future__ import annotations

import json
import logging
import os
from collections import deque
from enum import Enum
from typing import Any, Dict, List, Optional

from okx_relay.infra.logging_cfg import LOGGER_NAME, log_event

MAX_VALUE_CHARS = 2000


class LogCategory(str, Enum):
    CONNECTION = "CONNECTION"
    AUTH = "AUTH"
    SUBSCRIBE = "SUBSCRIBE"
    ORDER = "ORDER"
    NOTIFY = "NOTIFY"
    SYSTEM = "SYSTEM"
    ERROR = "ERROR"


def clip(value: Any, limit: int = MAX_VALUE_CHARS) -> Any:
    """Truncate long strings so raw frames cannot flood the log."""
    if isinstance(value, str) and len(value) > limit:
        return value[:limit] + "...(truncated)"
    return value


class EventLog:
    """Structured log sink; used for observability only, never control flow."""

    def __init__(self, logger: Optional[logging.Logger] = None, file_path: Optional[str] = None) -> None:
        self._log = logger or logging.getLogger(LOGGER_NAME)
        self._file_path = file_path

    @property
    def file_path(self) -> Optional[str]:
        return self._file_path

    def _emit(self, category: LogCategory, level: int, event: str, data: Dict[str, Any]) -> None:
        context = {k: clip(v) for k, v in data.items()}
        log_event(self._log, event, level=level, category=category.value, **context)

    def connection(self, event: str, level: int = logging.INFO, **data: Any) -> None:
        self._emit(LogCategory.CONNECTION, level, event, data)

    def auth(self, event: str, success: bool = True, **data: Any) -> None:
        self._emit(LogCategory.AUTH, logging.INFO if success else logging.ERROR, event, data)

    def subscribe(self, event: str, **data: Any) -> None:
        self._emit(LogCategory.SUBSCRIBE, logging.INFO, event, data)

    def order(self, event: str, **data: Any) -> None:
        self._emit(LogCategory.ORDER, logging.INFO, event, data)

    def notify(self, event: str, success: bool = True, **data: Any) -> None:
        self._emit(LogCategory.NOTIFY, logging.INFO if success else logging.ERROR, event, data)

    def system(self, event: str, level: int = logging.INFO, **data: Any) -> None:
        self._emit(LogCategory.SYSTEM, level, event, data)

    def error(self, event: str, error: Any = None, category: LogCategory = LogCategory.ERROR, **data: Any) -> None:
        if error is not None:
            data["err"] = str(error) if isinstance(error, BaseException) else error
        self._emit(category, logging.ERROR, event, data)

    # ─────────────────────────────────────────────────────────────────────
    # Log file access
    # ─────────────────────────────────────────────────────────────────────

    def recent(self, lines: int = 100) -> List[Dict[str, Any]]:
        """Return up to `lines` records from the log file, newest first."""
        if not self._file_path or not os.path.exists(self._file_path) or lines <= 0:
            return []
        with open(self._file_path, "r", encoding="utf-8", errors="replace") as fh:
            tail = deque(fh, maxlen=lines)
        entries: List[Dict[str, Any]] = []
        for raw in reversed(tail):
            raw = raw.strip()
            if not raw:
                continue
            try:
                record = json.loads(raw)
            except json.JSONDecodeError:
                entries.append({"msg": raw})
                continue
            entry = {"ts_iso": record.get("ts_iso"), "level": record.get("level")}
            msg = record.get("msg", "")
            try:
                body = json.loads(msg)
            except (json.JSONDecodeError, TypeError):
                body = None
            if isinstance(body, dict):
                entry.update(body)
            else:
                entry["msg"] = msg
            entries.append(entry)
        return entries

    def clear(self) -> None:
        if self._file_path and os.path.exists(self._file_path):
            with open(self._file_path, "w", encoding="utf-8"):
                pass
            self.system("log_cleared", path=self._file_path)
