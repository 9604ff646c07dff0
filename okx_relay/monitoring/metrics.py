"""
Lightweight Prometheus-style metrics and HTTP status server.

- /         - service banner
- /health   - liveness (no auth)
- /ready    - 200 only while the order channel is subscribed (no auth)
- /status   - connection and dispatch snapshot
- /metrics  - Prometheus text counters plus the labelled registry
- /logs     - newest event log entries (?lines=N)
- /test-notify (POST) - push a sample notification through the sink
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from prometheus_client import generate_latest

BANNER = "OKX订单订阅服务正在运行"
MAX_LOG_LINES = 1000


@dataclass
class HealthStatus:
    """Health status for the relay."""
    healthy: bool = True
    ready: bool = False
    last_heartbeat_ms: int = 0
    components: Dict[str, bool] = field(default_factory=dict)
    details: Dict[str, Any] = field(default_factory=dict)


class HealthChecker:
    """
    Tracks component health for /health and /ready.

    Components are either set explicitly or evaluated lazily through probes
    registered with register_probe(), so the HTTP handler always sees the
    current connection state.
    """

    def __init__(self) -> None:
        self._components: Dict[str, bool] = {}
        self._details: Dict[str, Any] = {}
        self._probes: Dict[str, Callable[[], bool]] = {}
        self._ready_probe: Optional[Callable[[], bool]] = None
        self._ready = False
        self._last_heartbeat = int(time.time() * 1000)
        self._callbacks: List[Callable[[str, bool], None]] = []

    def set_component_health(self, name: str, healthy: bool, detail: Optional[str] = None) -> None:
        previous = self._components.get(name)
        self._components[name] = healthy
        if detail:
            self._details[name] = detail
        self._last_heartbeat = int(time.time() * 1000)
        if previous is not healthy:
            for cb in self._callbacks:
                try:
                    cb(name, healthy)
                except Exception as exc:
                    logging.getLogger("okx_relay").warning(f"Health callback error: {exc}")

    def register_probe(self, name: str, probe: Callable[[], bool]) -> None:
        self._probes[name] = probe

    def set_ready_probe(self, probe: Callable[[], bool]) -> None:
        self._ready_probe = probe

    def set_ready(self, ready: bool) -> None:
        self._ready = ready
        self._last_heartbeat = int(time.time() * 1000)

    def register_callback(self, callback: Callable[[str, bool], None]) -> None:
        self._callbacks.append(callback)

    def _evaluate_probes(self) -> None:
        for name, probe in self._probes.items():
            try:
                healthy = bool(probe())
            except Exception as exc:
                healthy = False
                self._details[name] = f"probe error: {exc}"
            self.set_component_health(name, healthy)

    def is_healthy(self) -> bool:
        self._evaluate_probes()
        if not self._components:
            return True
        return all(self._components.values())

    def is_ready(self) -> bool:
        ready = self._ready_probe() if self._ready_probe else self._ready
        return bool(ready) and self.is_healthy()

    def get_status(self) -> HealthStatus:
        return HealthStatus(
            healthy=self.is_healthy(),
            ready=self.is_ready(),
            last_heartbeat_ms=self._last_heartbeat,
            components=dict(self._components),
            details=dict(self._details),
        )

    def to_dict(self) -> Dict[str, Any]:
        status = self.get_status()
        return {
            "healthy": status.healthy,
            "ready": status.ready,
            "last_heartbeat_ms": status.last_heartbeat_ms,
            "components": status.components,
            "details": status.details,
        }


class Metrics:
    def __init__(self) -> None:
        self._gauges: Dict[str, float] = {}
        self._counters: Dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def set_gauge(self, key: str, value: float) -> None:
        async with self._lock:
            self._gauges[key] = value

    async def add_counter(self, key: str, delta: float = 1.0) -> None:
        async with self._lock:
            self._counters[key] = self._counters.get(key, 0.0) + delta

    async def counter(self, key: str) -> float:
        async with self._lock:
            return self._counters.get(key, 0.0)

    async def render(self) -> str:
        async with self._lock:
            lines = []
            for k, v in self._gauges.items():
                lines.append(f"# TYPE {k} gauge")
                lines.append(f"{k} {v}")
            for k, v in self._counters.items():
                lines.append(f"# TYPE {k} counter")
                lines.append(f"{k} {v}")
            return "\n".join(lines) + "\n"


async def _respond(
    writer: asyncio.StreamWriter,
    status: str,
    body: str = "",
    content_type: str = "application/json",
) -> None:
    payload = body.encode("utf-8")
    head = (
        f"HTTP/1.1 {status}\r\n"
        f"Content-Type: {content_type}; charset=utf-8\r\n"
        f"Content-Length: {len(payload)}\r\n"
        "Connection: close\r\n\r\n"
    ).encode("ascii")
    writer.write(head + payload)
    await writer.drain()
    writer.close()


async def start_http_server(
    metrics: Metrics,
    port: int,
    health_checker: Optional[HealthChecker] = None,
    status_provider: Optional[Callable[[], Dict[str, Any]]] = None,
    event_log: Optional[Any] = None,
    test_notify: Optional[Callable[[], Awaitable[bool]]] = None,
    on_scrape: Optional[Callable[[], Awaitable[None]]] = None,
    auth_token: Optional[str] = None,
    host: str = "0.0.0.0",
    registry: Optional[Any] = None,
) -> asyncio.AbstractServer:
    """Start the status server; see module docstring for endpoints."""

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        req = await reader.read(2048)
        method, path_raw = "GET", "/"
        header_lines = req.split(b"\r\n") if req else []
        if header_lines and b" " in header_lines[0]:
            parts = header_lines[0].decode("utf-8", errors="ignore").split(" ")
            if len(parts) >= 2:
                method, path_raw = parts[0].upper(), parts[1]
        headers = {}
        for line in header_lines[1:]:
            if b":" in line:
                k, v = line.split(b":", 1)
                headers[k.strip().lower()] = v.strip()

        parsed = urlparse(path_raw)
        query = parse_qs(parsed.query)

        if parsed.path == "/":
            await _respond(writer, "200 OK", BANNER, content_type="text/plain")
            return

        # Health endpoints - no auth required for load balancers
        if parsed.path == "/health":
            body: Dict[str, Any] = {
                "status": "ok",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            status_code = "200 OK"
            if health_checker:
                body.update(health_checker.to_dict())
                if not body["healthy"]:
                    body["status"] = "degraded"
                    status_code = "503 Service Unavailable"
            await _respond(writer, status_code, json.dumps(body, ensure_ascii=False))
            return

        if parsed.path == "/ready":
            is_ready = health_checker.is_ready() if health_checker else True
            status_code = "200 OK" if is_ready else "503 Service Unavailable"
            await _respond(writer, status_code, json.dumps({"ready": is_ready}))
            return

        # Auth-protected endpoints
        if auth_token:
            header_auth = headers.get(b"authorization", b"").decode("utf-8", errors="ignore")
            token_ok = header_auth == f"Bearer {auth_token}" or query.get("token", [""])[0] == auth_token
            if not token_ok:
                await _respond(writer, "401 Unauthorized", json.dumps({"error": "unauthorized"}))
                return

        if parsed.path == "/status":
            try:
                snap = status_provider() if status_provider else {}
                await _respond(writer, "200 OK", json.dumps(snap, ensure_ascii=False, default=str))
            except Exception as exc:
                await _respond(writer, "500 Internal Server Error", json.dumps({"error": str(exc)}))
            return

        if parsed.path == "/logs":
            try:
                lines = int(query.get("lines", ["100"])[0])
            except ValueError:
                lines = 100
            lines = max(1, min(lines, MAX_LOG_LINES))
            entries = event_log.recent(lines) if event_log is not None else []
            await _respond(writer, "200 OK", json.dumps(entries, ensure_ascii=False, default=str))
            return

        if parsed.path == "/test-notify":
            if method != "POST":
                await _respond(writer, "405 Method Not Allowed", json.dumps({"error": "use POST"}))
                return
            if test_notify is None:
                await _respond(writer, "404 Not Found", json.dumps({"error": "no sink"}))
                return
            success = await test_notify()
            body = {"success": success, "message": "测试通知发送成功" if success else "测试通知发送失败"}
            await _respond(writer, "200 OK", json.dumps(body, ensure_ascii=False))
            return

        if parsed.path == "/metrics":
            if on_scrape is not None:
                await on_scrape()
            text = await metrics.render()
            if registry is not None:
                text += generate_latest(registry).decode("utf-8")
            await _respond(writer, "200 OK", text, content_type="text/plain; version=0.0.4")
            return

        await _respond(writer, "404 Not Found", json.dumps({"error": "not found"}))

    return await asyncio.start_server(handle, host, port)
