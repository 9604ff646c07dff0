"""
RelayApp: wires settings, logging, sink, dispatcher, connection manager and
the status server into one start()/stop() unit.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from okx_relay.config.config import Settings
from okx_relay.exchange.connection import ConnectionConfig, ConnectionManager, Connector
from okx_relay.exchange.signer import Signer
from okx_relay.infra.event_log import EventLog
from okx_relay.monitoring.metrics import HealthChecker, Metrics, start_http_server
from okx_relay.monitoring.metrics_rich import RichMetrics
from okx_relay.notify.dispatcher import OrderEventDispatcher, format_time
from okx_relay.notify.sinks import build_sink


class RelayApp:
    def __init__(
        self,
        cfg: Settings,
        event_log: Optional[EventLog] = None,
        sink: Optional[Any] = None,
        connector: Optional[Connector] = None,
    ) -> None:
        self.cfg = cfg
        self.event_log = event_log or EventLog(file_path=cfg.log_file)
        self.metrics = Metrics()
        self.rich_metrics = RichMetrics()
        self.health = HealthChecker()
        self.sink = sink if sink is not None else build_sink(cfg, self.event_log)
        self._owns_sink = sink is None
        self.dispatcher = OrderEventDispatcher(
            self.sink, self.event_log, timeout_sec=cfg.notify_timeout_sec, metrics=self.metrics,
            rich_metrics=self.rich_metrics,
        )
        self.manager = ConnectionManager(
            ConnectionConfig.from_settings(cfg),
            Signer(cfg.secret_key),
            self.dispatcher,
            event_log=self.event_log,
            connector=connector,
            metrics=self.metrics,
            rich_metrics=self.rich_metrics,
        )
        self.health.register_probe("login", lambda: not self.manager.snapshot()["login_failed"])
        self.health.set_ready_probe(lambda: self.manager.is_subscribed)
        self._server: Optional[asyncio.AbstractServer] = None
        self._started = False
        self._stopped = False

    def status(self) -> Dict[str, Any]:
        return {
            "connection": self.manager.snapshot(),
            "dispatch": {**self.dispatcher.stats, "pending_frames": self.dispatcher.pending},
            "simulated": self.cfg.simulated,
            "notify_type": self.cfg.notify_type,
        }

    async def _publish_gauges(self) -> None:
        await self.metrics.set_gauge("okx_connection_state", self.manager.state.value)
        await self.metrics.set_gauge("okx_dispatch_pending_frames", self.dispatcher.pending)

    async def send_test_notification(self) -> bool:
        """Push a fixed sample order through the sink."""
        now_ms = str(int(time.time() * 1000))
        try:
            ok = await asyncio.wait_for(
                self.sink.send_order_notification(format_time(now_ms), "BTC-USDT-SWAP", "买入", "0.1 @ 95000", "完全成交"),
                timeout=self.cfg.notify_timeout_sec,
            )
        except asyncio.TimeoutError:
            ok = False
        except Exception as exc:
            self.event_log.error("test_notify_error", error=exc)
            ok = False
        self.event_log.notify("test_notify", success=bool(ok))
        return bool(ok)

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.event_log.system("config_loaded", **self.cfg.dump())
        if self.cfg.http_port:
            self._server = await start_http_server(
                self.metrics,
                self.cfg.http_port,
                health_checker=self.health,
                status_provider=self.status,
                event_log=self.event_log,
                test_notify=self.send_test_notification,
                on_scrape=self._publish_gauges,
                auth_token=self.cfg.http_token,
                registry=self.rich_metrics.get_registry(),
            )
            self.event_log.system("http_server_started", port=self.cfg.http_port)
        await self.manager.start()

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self.event_log.system("relay_shutdown", level=logging.WARNING)
        await self.manager.stop()
        await self.dispatcher.drain(timeout=self.cfg.notify_timeout_sec)
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        if self._owns_sink:
            await self.sink.close()
