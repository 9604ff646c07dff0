"""
HTTP notification sinks.

- WechatTemplateSink: WeChat template-message push API (keyword1..keyword5)
- WebhookSink: generic JSON webhook with the same five fields

Both expose send_order_notification(...) -> bool and never raise on
delivery problems: any failure is logged and reported as False. Timeouts are
enforced by the httpx client; the dispatcher adds its own bound on top.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from okx_relay.infra.event_log import EventLog, LogCategory


class HttpSink(ABC):
    """Base class: owns (or borrows) an httpx.AsyncClient and POSTs JSON. Subclasses define format_payload()."""

    name = "http"

    def __init__(
        self,
        url: Optional[str],
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self.url = url
        self._log = event_log or EventLog()
        # If a shared client is passed in, we won't close it in close(); otherwise we own the client.
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(timeout=timeout, headers={"Content-Type": "application/json"})
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    @abstractmethod
    def format_payload(
        self, time: str, instrument: str, side_label: str, size_text: str, state_label: str
    ) -> Dict[str, Any]:
        """Build the JSON body for one order notification."""

    async def send_order_notification(
        self, time: str, instrument: str, side_label: str, size_text: str, state_label: str
    ) -> bool:
        payload = self.format_payload(time, instrument, side_label, size_text, state_label)
        return await self._http_post(payload)

    async def _http_post(self, payload: Dict[str, Any]) -> bool:
        if not self.url:
            self._log.notify("notify_skipped", success=False, sink=self.name, reason="no url configured")
            return False

        self._log.notify("notify_request", sink=self.name, payload=json.dumps(payload, ensure_ascii=False))
        try:
            resp = await self.client.post(self.url, json=payload)
        except httpx.TimeoutException as exc:
            self._log.error("notify_timeout", error=exc, category=LogCategory.NOTIFY, sink=self.name)
            return False
        except httpx.HTTPError as exc:
            self._log.error("notify_http_error", error=exc, category=LogCategory.NOTIFY, sink=self.name)
            return False

        if resp.status_code >= 300:
            self._log.notify("notify_rejected", success=False, sink=self.name,
                             status=resp.status_code, body=resp.text)
            return False
        self._log.notify("notify_response", sink=self.name, status=resp.status_code, body=resp.text)
        return True


class WechatTemplateSink(HttpSink):
    """Push through a WeChat template-message relay API."""

    name = "wechat"

    def __init__(
        self,
        url: Optional[str],
        openid: Optional[str],
        template_id: Optional[str],
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        event_log: Optional[EventLog] = None,
        link: str = "",
    ) -> None:
        super().__init__(url, timeout=timeout, client=client, event_log=event_log)
        self.openid = openid or ""
        self.template_id = template_id or ""
        self.link = link

    def format_payload(
        self, time: str, instrument: str, side_label: str, size_text: str, state_label: str
    ) -> Dict[str, Any]:
        # keyword1..5: trade time, instrument, side, size, order state
        values = (time, instrument, side_label, size_text, state_label)
        return {
            "openid": self.openid,
            "templateId": self.template_id,
            "data": {f"keyword{i}": {"value": v} for i, v in enumerate(values, start=1)},
            "url": self.link,
        }


class WebhookSink(HttpSink):
    """Flat JSON body for a generic webhook receiver."""

    name = "generic"

    def format_payload(
        self, time: str, instrument: str, side_label: str, size_text: str, state_label: str
    ) -> Dict[str, Any]:
        return {
            "source": "okx_relay",
            "time": time,
            "instrument": instrument,
            "side": side_label,
            "size": size_text,
            "state": state_label,
        }


def build_sink(cfg, event_log: Optional[EventLog] = None, client: Optional[httpx.AsyncClient] = None) -> HttpSink:
    """Pick the sink selected by NOTIFY_TYPE."""
    if cfg.notify_type == "generic":
        return WebhookSink(cfg.webhook_url, timeout=cfg.notify_timeout_sec, client=client, event_log=event_log)
    return WechatTemplateSink(
        cfg.wechat_api_url,
        cfg.wechat_openid,
        cfg.wechat_template_id,
        timeout=cfg.notify_timeout_sec,
        client=client,
        event_log=event_log,
    )
