"""
End-to-end tests for RelayApp with a fake exchange socket and a recording sink.
"""
import asyncio
import json

import pytest

from okx_relay.app import RelayApp
from okx_relay.exchange.connection import ConnectionState


def _order_frame():
    return {
        "arg": {"channel": "orders", "instType": "ANY"},
        "data": [{
            "instType": "SWAP", "instId": "BTC-USDT-SWAP", "ordId": "42", "side": "sell",
            "sz": "3", "avgPx": "0", "state": "live", "uTime": "1735200000000",
        }],
    }


class TestRelayApp:
    @pytest.mark.asyncio
    async def test_order_flows_to_sink(self, make_settings, connector, make_sink, wait_until):
        """Login, subscribe, then an order frame reaches the sink."""
        sink = make_sink()
        app = RelayApp(make_settings(reconnect_delay_sec=0.1), sink=sink, connector=connector)
        try:
            await app.start()
            assert await wait_until(lambda: connector.sockets and connector.last.sent)
            sock = connector.last
            assert connector.urls[0].startswith("wss://wspap.okx.com")
            assert sock.ops() == ["login"]

            sock.feed_json({"event": "login", "code": "0", "connId": "x"})
            assert await wait_until(lambda: len(sock.sent) == 2)
            sock.feed_json({"event": "subscribe", "arg": {"channel": "orders", "instType": "ANY"}})
            assert await wait_until(lambda: app.manager.is_subscribed)
            assert app.health.is_ready()

            sock.feed(json.dumps(_order_frame()))
            assert await wait_until(lambda: len(sink.calls) == 1)
            assert sink.calls[0][1:] == ("BTC-USDT-SWAP", "卖出", "3", "等待成交")

            status = app.status()
            assert status["connection"]["state"] == "SUBSCRIBED"
            assert status["dispatch"]["succeeded"] == 1
            assert status["notify_type"] == "wechat"
        finally:
            await app.stop()
        assert app.manager.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_login_failure_marks_unhealthy(self, make_settings, connector, make_sink, wait_until):
        app = RelayApp(make_settings(), sink=make_sink(), connector=connector)
        try:
            await app.start()
            assert await wait_until(lambda: connector.sockets and connector.last.sent)
            connector.last.feed_json({"event": "login", "code": "60009", "msg": "Login failed."})
            assert await wait_until(lambda: not app.health.is_healthy())
            assert not app.health.is_ready()
        finally:
            await app.stop()

    @pytest.mark.asyncio
    async def test_send_test_notification(self, make_settings, connector, make_sink):
        sink = make_sink()
        app = RelayApp(make_settings(), sink=sink, connector=connector)
        assert await app.send_test_notification() is True
        assert sink.calls[0][1:] == ("BTC-USDT-SWAP", "买入", "0.1 @ 95000", "完全成交")

    @pytest.mark.asyncio
    async def test_send_test_notification_failure(self, make_settings, connector, make_sink):
        app = RelayApp(make_settings(), sink=make_sink(exc=RuntimeError("down")), connector=connector)
        assert await app.send_test_notification() is False

    @pytest.mark.asyncio
    async def test_gauges_published_on_scrape(self, make_settings, connector, make_sink):
        app = RelayApp(make_settings(), sink=make_sink(), connector=connector)
        await app._publish_gauges()
        text = await app.metrics.render()
        assert "okx_connection_state 0" in text

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, make_settings, connector, make_sink, wait_until):
        app = RelayApp(make_settings(), sink=make_sink(), connector=connector)
        await app.start()
        await app.start()
        assert await wait_until(lambda: connector.sockets)
        await app.stop()
        await app.stop()
        assert connector.calls == 1
        assert connector.last.closed

    @pytest.mark.asyncio
    async def test_labelled_metrics_follow_traffic(self, make_settings, connector, make_sink, wait_until):
        sink = make_sink()
        app = RelayApp(make_settings(), sink=sink, connector=connector)
        registry = app.rich_metrics.get_registry()
        try:
            await app.start()
            assert await wait_until(lambda: connector.sockets and connector.last.sent)
            sock = connector.last
            sock.feed_json({"event": "login", "code": "0"})
            sock.feed("pong")
            sock.feed(json.dumps(_order_frame()))
            assert await wait_until(lambda: len(sink.calls) == 1)
            await asyncio.sleep(0.01)
        finally:
            await app.stop()

        assert registry.get_sample_value("okx_ws_connects_total", {"outcome": "opened"}) == 1.0
        assert registry.get_sample_value("okx_logins_total", {"result": "ok"}) == 1.0
        assert registry.get_sample_value("okx_ws_frames_total", {"kind": "Pong"}) == 1.0
        assert registry.get_sample_value("okx_ws_frames_total", {"kind": "OrderBatch"}) == 1.0
        assert registry.get_sample_value(
            "okx_order_updates_total", {"inst_type": "SWAP", "state": "live"}
        ) == 1.0
        assert registry.get_sample_value("okx_notifications_total", {"outcome": "ok"}) == 1.0
        assert registry.get_sample_value("okx_notify_latency_ms_count") == 1.0
        assert registry.get_sample_value("okx_ws_state") == 0.0
