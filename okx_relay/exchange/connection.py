"""
ConnectionManager: lifecycle of the private OKX WebSocket.

State machine:

    DISCONNECTED --connect()--> CONNECTING --open--> AWAITING_LOGIN_ACK
    AWAITING_LOGIN_ACK --login ok--> AUTHENTICATED --subscribe ack--> SUBSCRIBED
    any --close/transport failure--> DISCONNECTED (+ reconnect timer if allowed)

Concurrency:
    Everything runs on one asyncio loop. One reader task per connection feeds
    frames to the handlers in order; the heartbeat and reconnect timers are
    tasks owned by the manager. Code on other threads must go through
    request_stop_threadsafe() instead of calling stop() directly.

Reconnect policy:
    Fixed delay, unbounded attempts, no backoff or jitter. Every reconnect
    repeats login and subscribe because the exchange drops subscriptions with
    the socket.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from websockets.asyncio.client import connect as ws_connect

from okx_relay.exchange.messages import (
    ORDERS_CHANNEL,
    PING,
    DecodeFault,
    ErrorEvent,
    LoginResult,
    OrderBatch,
    Pong,
    SubscribeAck,
    build_login,
    build_subscribe,
    decode_frame,
)
from okx_relay.exchange.signer import Signer
from okx_relay.infra.event_log import EventLog, LogCategory


class ConnectionState(Enum):
    DISCONNECTED = 0
    CONNECTING = 1
    AWAITING_LOGIN_ACK = 2
    AUTHENTICATED = 3
    SUBSCRIBED = 4


@dataclass
class ConnectionConfig:
    """Configuration for ConnectionManager."""
    url: str
    api_key: str
    passphrase: str
    heartbeat_sec: float = 25.0
    reconnect_delay_sec: float = 5.0
    connect_timeout_sec: float = 10.0
    # Close the socket if nothing was received for this long (0 = rely on the transport)
    liveness_timeout_sec: float = 0.0
    close_timeout_sec: float = 5.0
    channel: str = ORDERS_CHANNEL
    inst_type: str = "ANY"

    @classmethod
    def from_settings(cls, cfg) -> "ConnectionConfig":
        return cls(
            url=cfg.ws_url,
            api_key=cfg.api_key,
            passphrase=cfg.passphrase,
            heartbeat_sec=cfg.heartbeat_sec,
            reconnect_delay_sec=cfg.reconnect_delay_sec,
            connect_timeout_sec=cfg.connect_timeout_sec,
            liveness_timeout_sec=cfg.liveness_timeout_sec,
        )


Connector = Callable[[str], Awaitable[Any]]


async def websocket_connector(url: str) -> Any:
    # Library keepalive is off: liveness is the text ping below plus the transport itself.
    return await ws_connect(url, ping_interval=None, open_timeout=None)


class ConnectionManager:
    """
    Owns the socket, both timers and the connection state.

    Usage:
        manager = ConnectionManager(config, signer, dispatcher, event_log)
        await manager.start()
        ...
        await manager.stop()
    """

    def __init__(
        self,
        config: ConnectionConfig,
        signer: Signer,
        dispatcher: Any,
        event_log: Optional[EventLog] = None,
        connector: Optional[Connector] = None,
        metrics: Optional[Any] = None,
        clock: Callable[[], float] = time.time,
        rich_metrics: Optional[Any] = None,
    ) -> None:
        self.config = config
        self._signer = signer
        self._dispatcher = dispatcher
        self._log = event_log or EventLog()
        self._connector = connector or websocket_connector
        self._metrics = metrics
        self._rich_metrics = rich_metrics
        self._clock = clock

        self._state = ConnectionState.DISCONNECTED
        self._ws: Optional[Any] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._started = False
        self._stopped = False
        self._reconnect_allowed = True
        self._connection_id = 0
        self._login_failed = False
        self._last_frame_at = 0.0
        self._connected_at = 0.0

        self._stats: Dict[str, int] = {
            "connect_attempts": 0,
            "opens": 0,
            "closes": 0,
            "reconnects": 0,
            "frames": 0,
            "pongs": 0,
            "pings": 0,
            "login_failures": 0,
            "decode_faults": 0,
            "order_records": 0,
            "errors": 0,
        }

    # ─────────────────────────────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_subscribed(self) -> bool:
        return self._state is ConnectionState.SUBSCRIBED

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def snapshot(self) -> Dict[str, Any]:
        now = time.monotonic()
        return {
            "state": self._state.name,
            "url": self.config.url,
            "connection_id": self._connection_id,
            "login_failed": self._login_failed,
            "reconnect_pending": self.reconnect_pending,
            "stopped": self._stopped,
            "uptime_sec": round(now - self._connected_at, 1) if self._ws is not None else 0.0,
            "last_frame_age_sec": round(now - self._last_frame_at, 1) if self._last_frame_at else None,
            **self._stats,
        }

    # ─────────────────────────────────────────────────────────────────────
    # Lifecycle hooks
    # ─────────────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Begin the connect sequence. Idempotent; a no-op after stop()."""
        if self._started or self._stopped:
            return
        self._started = True
        self._loop = asyncio.get_running_loop()
        self._log.system("relay_start", url=self.config.url)
        await self.connect()

    async def connect(self) -> None:
        """Open a socket unless one is already in flight or the manager is stopped."""
        if self._stopped or not self._reconnect_allowed:
            self._log.connection("connect_skipped", level=logging.DEBUG, reason="stopped")
            return
        if self._state is not ConnectionState.DISCONNECTED:
            self._log.connection("connect_skipped", level=logging.DEBUG, reason="in_flight",
                                 state=self._state.name)
            return

        self._cancel_reconnect()
        self._connection_id += 1
        self._stats["connect_attempts"] += 1
        self._set_state(ConnectionState.CONNECTING)
        self._log.connection("ws_connecting", url=self.config.url, connection_id=self._connection_id)
        self._reader_task = asyncio.create_task(self._run(self._connection_id))

    async def stop(self) -> None:
        """Disable reconnect, cancel timers and close the socket. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        self._reconnect_allowed = False
        self._cancel_reconnect()
        self._cancel_heartbeat()

        ws = self._ws
        if ws is not None:
            await self._close_socket(ws)

        reader = self._reader_task
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            if ws is None:
                reader.cancel()
            _, pending = await asyncio.wait({reader}, timeout=self.config.close_timeout_sec)
            if pending:
                reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

        self._cancel_heartbeat()
        self._ws = None
        self._set_state(ConnectionState.DISCONNECTED)
        self._log.system("relay_stopped", **self._stats)

    def request_stop_threadsafe(self) -> concurrent.futures.Future:
        """Schedule stop() on the manager's loop from another thread."""
        if self._loop is None:
            raise RuntimeError("ConnectionManager has not been started")
        return asyncio.run_coroutine_threadsafe(self.stop(), self._loop)

    # ─────────────────────────────────────────────────────────────────────
    # Socket events
    # ─────────────────────────────────────────────────────────────────────

    async def _run(self, connection_id: int) -> None:
        """Reader task: open, feed frames in order, always finish with a close event."""
        ws = None
        try:
            try:
                ws = await asyncio.wait_for(
                    self._connector(self.config.url), timeout=self.config.connect_timeout_sec
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if self._rich_metrics:
                    self._rich_metrics.ws_connects.labels(outcome="failed").inc()
                self._on_error(exc, stage="connect")
                return
            if self._stopped:
                await ws.close()
                return
            self._ws = ws
            if self._rich_metrics:
                self._rich_metrics.ws_connects.labels(outcome="opened").inc()
            await self._on_open()
            async for frame in ws:
                await self._on_message(frame)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._on_error(exc, stage="read")
            if ws is not None:
                await self._close_socket(ws)
        finally:
            code = getattr(ws, "close_code", None) if ws is not None else None
            reason = getattr(ws, "close_reason", None) if ws is not None else None
            await self._on_close(connection_id, code, reason)

    async def _close_socket(self, ws: Any) -> None:
        try:
            await ws.close()
        except Exception as exc:
            self._log.error("ws_close_error", error=exc, category=LogCategory.CONNECTION)

    async def _on_open(self) -> None:
        self._stats["opens"] += 1
        self._login_failed = False
        self._connected_at = time.monotonic()
        self._last_frame_at = self._connected_at
        self._set_state(ConnectionState.AWAITING_LOGIN_ACK)
        self._log.connection("ws_open", url=self.config.url, connection_id=self._connection_id)
        await self._send_login()
        self._start_heartbeat()

    async def _on_message(self, frame: Any) -> None:
        self._last_frame_at = time.monotonic()
        self._stats["frames"] += 1
        await self._count("okx_frames_total")

        message = decode_frame(frame)
        if self._rich_metrics:
            self._rich_metrics.ws_frames.labels(kind=type(message).__name__).inc()
        if isinstance(message, Pong):
            self._stats["pongs"] += 1
        elif isinstance(message, LoginResult):
            await self._handle_login(message)
        elif isinstance(message, SubscribeAck):
            self._handle_subscribe_ack(message)
        elif isinstance(message, ErrorEvent):
            self._log.error("exchange_error", error=message.msg, code=message.code, state=self._state.name)
        elif isinstance(message, OrderBatch):
            self._stats["order_records"] += len(message.orders)
            self._log.order("order_batch", count=len(message.orders))
            self._dispatcher.submit(message.orders)
        elif isinstance(message, DecodeFault):
            self._stats["decode_faults"] += 1
            await self._count("okx_decode_faults_total")
            self._log.error("decode_fault", error=message.reason, raw=message.raw)

    def _on_error(self, exc: BaseException, stage: str) -> None:
        # Errors alone never change state; the close that follows does.
        self._stats["errors"] += 1
        event = "ws_connect_failed" if stage == "connect" else "ws_error"
        self._log.error(event, error=f"{type(exc).__name__}: {exc}", category=LogCategory.CONNECTION,
                        stage=stage, state=self._state.name)

    async def _on_close(self, connection_id: int, code: Optional[int], reason: Optional[str]) -> None:
        if connection_id != self._connection_id:
            return
        self._cancel_heartbeat()
        previous = self._state
        self._ws = None
        self._set_state(ConnectionState.DISCONNECTED)
        self._stats["closes"] += 1
        if self._rich_metrics:
            self._rich_metrics.ws_closes.labels(code=str(code)).inc()
        self._log.connection("ws_closed", level=logging.WARNING, code=code, reason=reason or "",
                             previous_state=previous.name)
        if self._reconnect_allowed and not self._stopped:
            self._schedule_reconnect()

    # ─────────────────────────────────────────────────────────────────────
    # Handshake
    # ─────────────────────────────────────────────────────────────────────

    async def _send_login(self) -> None:
        timestamp = str(int(self._clock()))
        sign = self._signer.sign_login(timestamp)
        payload = build_login(self.config.api_key, self.config.passphrase, timestamp, sign)
        if await self._send(payload):
            self._log.auth("login_sent", timestamp=timestamp)

    async def _handle_login(self, result: LoginResult) -> None:
        if self._login_failed:
            self._log.auth("login_after_failure_ignored", success=False, code=result.code)
            return
        if self._state is not ConnectionState.AWAITING_LOGIN_ACK:
            self._log.auth("login_unexpected", success=False, state=self._state.name, code=result.code)
            return
        if not result.success:
            # Left open on purpose: an operator has to fix the credentials.
            self._login_failed = True
            if self._rich_metrics:
                self._rich_metrics.logins.labels(result="failed").inc()
            self._stats["login_failures"] += 1
            await self._count("okx_login_failures_total")
            self._log.auth("login_failed", success=False, code=result.code, msg=result.msg)
            return
        self._set_state(ConnectionState.AUTHENTICATED)
        if self._rich_metrics:
            self._rich_metrics.logins.labels(result="ok").inc()
        self._log.auth("login_ok", conn_id=result.conn_id)
        await self._send_subscribe()

    async def _send_subscribe(self) -> None:
        if self._state is not ConnectionState.AUTHENTICATED or self._login_failed:
            return
        payload = build_subscribe(self.config.channel, self.config.inst_type)
        if await self._send(payload):
            self._log.subscribe("subscribe_sent", channel=self.config.channel, inst_type=self.config.inst_type)

    def _handle_subscribe_ack(self, ack: SubscribeAck) -> None:
        if self._state is ConnectionState.AUTHENTICATED:
            self._set_state(ConnectionState.SUBSCRIBED)
            self._log.subscribe("subscribe_ok", arg=ack.arg)
        else:
            self._log.subscribe("subscribe_ack_ignored", arg=ack.arg, state=self._state.name)

    async def _send(self, text: str) -> bool:
        ws = self._ws
        if ws is None:
            return False
        try:
            await ws.send(text)
            return True
        except Exception as exc:
            self._on_error(exc, stage="send")
            return False

    # ─────────────────────────────────────────────────────────────────────
    # Timers
    # ─────────────────────────────────────────────────────────────────────

    def _start_heartbeat(self) -> None:
        self._cancel_heartbeat()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(self._connection_id))

    def _cancel_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _heartbeat_loop(self, connection_id: int) -> None:
        interval = self.config.heartbeat_sec
        liveness = self.config.liveness_timeout_sec
        while True:
            await asyncio.sleep(interval)
            ws = self._ws
            if connection_id != self._connection_id or ws is None:
                return
            if liveness > 0 and time.monotonic() - self._last_frame_at > liveness:
                self._log.connection("liveness_timeout", level=logging.WARNING,
                                     silent_sec=round(time.monotonic() - self._last_frame_at, 1))
                await ws.close()
                return
            if await self._send(PING):
                self._stats["pings"] += 1
                self._log.connection("ping_sent", level=logging.DEBUG)

    def _schedule_reconnect(self) -> None:
        if self.reconnect_pending:
            return
        delay = self.config.reconnect_delay_sec
        self._log.connection("reconnect_scheduled", level=logging.WARNING, delay_sec=delay)
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        if task is None or task is asyncio.current_task():
            return
        self._reconnect_task = None
        if not task.done():
            task.cancel()

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_task = None
        if self._stopped or not self._reconnect_allowed:
            return
        self._stats["reconnects"] += 1
        await self._count("okx_reconnects_total")
        await self.connect()

    # ─────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            self._log.connection("state_change", level=logging.DEBUG,
                                 old=self._state.name, new=state.name)
        self._state = state
        if self._rich_metrics:
            self._rich_metrics.ws_state.set(state.value)

    async def _count(self, key: str) -> None:
        if self._metrics is not None:
            await self._metrics.add_counter(key)
