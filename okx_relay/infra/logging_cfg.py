"""
Structured logging setup for the order relay.

- Async-safe queue handler so file writes never block the event loop
- Size-rotated JSON-lines file for the /logs endpoint and ingestion
- Throttling for repetitive reconnect and heartbeat warnings
"""

from __future__ import annotations

import atexit
import json
import logging
import os
import queue
import sys
import threading
import time
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Dict, Optional, Set

from rich.logging import RichHandler


# Log level constants for semantic clarity
ERROR = logging.ERROR      # Failures requiring attention (login rejected, notify failed)
WARNING = logging.WARNING  # Recoverable issues (socket closed, reconnect armed)
INFO = logging.INFO        # Lifecycle events (open, login, subscribe, orders)
DEBUG = logging.DEBUG      # High-frequency diagnostics (ping sent, raw frames)

LOGGER_NAME = "okx_relay"


class JsonFormatter(logging.Formatter):
    """Compact JSON formatter for structured log ingestion."""

    def format(self, record: logging.LogRecord) -> str:
        ts = record.created
        payload = {
            "ts": ts,
            "ts_iso": datetime.fromtimestamp(ts).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


class AsyncQueueHandler(logging.Handler):
    """
    Non-blocking handler that queues log records for background processing.

    Records are written by a dedicated background thread.
    """

    def __init__(self, target_handler: logging.Handler, max_queue_size: int = 10000):
        super().__init__()
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._target = target_handler
        self._shutdown = False
        self._dropped = 0
        self._thread = threading.Thread(target=self._worker, daemon=True, name="log-writer")
        self._thread.start()
        atexit.register(self.close)

    def emit(self, record: logging.LogRecord) -> None:
        if self._shutdown:
            return
        try:
            self._queue.put_nowait(record)
        except queue.Full:
            self._dropped += 1

    def flush(self) -> None:
        """Block until queued records have been written."""
        self._queue.join()
        self._target.flush()

    def _worker(self) -> None:
        while not self._shutdown or not self._queue.empty():
            try:
                record = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._target.emit(record)
            except Exception:
                self.handleError(record)
            finally:
                self._queue.task_done()

    def close(self) -> None:
        if self._shutdown:
            return
        self._shutdown = True
        if self._thread.is_alive():
            self._thread.join(timeout=2.0)
        if self._dropped > 0:
            sys.stderr.write(f"[logging] Dropped {self._dropped} log records due to queue overflow\n")
        self._target.close()
        super().close()


class ThrottledFilter(logging.Filter):
    """
    Allows the first occurrence of a throttled event, then suppresses
    duplicates for cooldown_sec. A relay stuck in a reconnect loop would
    otherwise print the same three lines every few seconds.
    """

    def __init__(self, cooldown_sec: float = 30.0, throttled_events: Optional[Set[str]] = None):
        super().__init__()
        self._cooldown = cooldown_sec
        self._last_seen: Dict[str, float] = {}
        self._throttled_events = throttled_events or {
            "ws_connect_failed", "ws_closed", "reconnect_scheduled", "ping_failed",
        }

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        try:
            data = json.loads(msg)
            event = data.get("event", "")
        except (json.JSONDecodeError, TypeError, AttributeError):
            return True

        if event not in self._throttled_events:
            return True

        now = time.time()
        key = f"{event}:{data.get('category', '')}"
        last = self._last_seen.get(key, 0.0)
        if now - last < self._cooldown:
            return False

        self._last_seen[key] = now
        return True


def build_logger(
    name: str = LOGGER_NAME,
    level: int | str = logging.INFO,
    file_path: Optional[str] = "logs/okx.log",
    async_file: bool = True,
    throttle_warnings: bool = True,
    console_json: bool = False,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> logging.Logger:
    """
    Build the relay logger.

    Args:
        name: Logger name
        level: Minimum log level
        file_path: Path to the JSON-lines log file (None to disable file logging)
        async_file: Use async queue handler for file to avoid blocking
        throttle_warnings: Apply throttling filter on the console
        console_json: Emit JSON on stdout instead of rich output (for journald)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Idempotent handler setup
    if logger.handlers:
        for h in logger.handlers:
            h.setLevel(level)
        return logger

    if console_json:
        stream_handler: logging.Handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(JsonFormatter())
    else:
        stream_handler = RichHandler(
            rich_tracebacks=False,
            show_time=True,
            show_level=True,
            show_path=False,
            markup=False,
        )
        stream_handler.setFormatter(logging.Formatter("%(message)s"))
    stream_handler.setLevel(level)
    if throttle_warnings:
        stream_handler.addFilter(ThrottledFilter(cooldown_sec=30.0))
    logger.addHandler(stream_handler)

    if file_path:
        directory = os.path.dirname(file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        file_handler = RotatingFileHandler(
            file_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setFormatter(JsonFormatter())
        file_handler.setLevel(level)

        if async_file:
            async_handler = AsyncQueueHandler(file_handler, max_queue_size=10000)
            async_handler.setLevel(level)
            logger.addHandler(async_handler)
        else:
            logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def log_event(
    logger: logging.Logger,
    event: str,
    level: int = logging.INFO,
    **data
) -> None:
    """
    Log a structured event with proper level.

    Usage:
        log_event(log, "ws_open", level=INFO, url=url)
    """
    payload = {"event": event, **data}
    logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))
