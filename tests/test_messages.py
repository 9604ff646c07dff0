"""
Tests for inbound frame classification and outbound request builders.
"""

import json

from okx_relay.exchange.messages import (
    DecodeFault,
    ErrorEvent,
    LoginResult,
    OrderBatch,
    OrderRecord,
    Pong,
    SubscribeAck,
    build_login,
    build_subscribe,
    decode_frame,
)


ORDER_ENTRY = {
    "instType": "SPOT",
    "instId": "BTC-USDT",
    "ordId": "312269865356374016",
    "side": "buy",
    "sz": "0.1",
    "avgPx": "95000",
    "accFillSz": "0.1",
    "state": "filled",
    "uTime": "1735200000000",
    "fee": "-0.0001",
    "feeCcy": "BTC",
}


class TestDecodeFrame:
    def test_pong(self):
        assert decode_frame("pong") == Pong()

    def test_pong_as_bytes(self):
        assert decode_frame(b"pong") == Pong()

    def test_login_success(self):
        msg = decode_frame('{"event":"login","code":"0","msg":"","connId":"a4d3ae55"}')
        assert msg == LoginResult(success=True, code="0", msg="", conn_id="a4d3ae55")

    def test_login_failure(self):
        msg = decode_frame('{"event":"login","code":"60009","msg":"Login failed."}')
        assert isinstance(msg, LoginResult)
        assert msg.success is False
        assert msg.code == "60009"
        assert msg.msg == "Login failed."

    def test_subscribe_ack(self):
        msg = decode_frame('{"event":"subscribe","arg":{"channel":"orders","instType":"ANY"}}')
        assert msg == SubscribeAck(arg={"channel": "orders", "instType": "ANY"})

    def test_error_event(self):
        msg = decode_frame('{"event":"error","code":"60012","msg":"Invalid request"}')
        assert msg == ErrorEvent(code="60012", msg="Invalid request")

    def test_order_batch_preserves_array_order(self):
        frame = json.dumps({
            "arg": {"channel": "orders", "instType": "ANY"},
            "data": [dict(ORDER_ENTRY, ordId="1"), dict(ORDER_ENTRY, ordId="2"), dict(ORDER_ENTRY, ordId="3")],
        })
        msg = decode_frame(frame)
        assert isinstance(msg, OrderBatch)
        assert [o.ord_id for o in msg.orders] == ["1", "2", "3"]

    def test_order_fields_mapped(self):
        frame = json.dumps({"arg": {"channel": "orders"}, "data": [ORDER_ENTRY]})
        order = decode_frame(frame).orders[0]
        assert order.inst_type == "SPOT"
        assert order.inst_id == "BTC-USDT"
        assert order.side == "buy"
        assert order.sz == "0.1"
        assert order.avg_px == "95000"
        assert order.state == "filled"
        assert order.u_time == "1735200000000"
        # absent fields default to empty strings
        assert order.pnl == ""
        assert order.lever == ""

    def test_empty_order_batch(self):
        msg = decode_frame('{"arg":{"channel":"orders"},"data":[]}')
        assert msg == OrderBatch(orders=())

    def test_other_channel_is_unrecognized(self):
        msg = decode_frame('{"arg":{"channel":"positions"},"data":[{}]}')
        assert isinstance(msg, DecodeFault)
        assert msg.reason == "unrecognized message shape"

    def test_orders_data_not_a_list(self):
        msg = decode_frame('{"arg":{"channel":"orders"},"data":{"instId":"BTC-USDT"}}')
        assert isinstance(msg, DecodeFault)

    def test_orders_entry_not_an_object(self):
        msg = decode_frame('{"arg":{"channel":"orders"},"data":["oops"]}')
        assert isinstance(msg, DecodeFault)

    def test_malformed_json(self):
        msg = decode_frame("{not json")
        assert isinstance(msg, DecodeFault)
        assert msg.reason.startswith("invalid json")
        assert msg.raw == "{not json"

    def test_non_object_json(self):
        assert isinstance(decode_frame("[1, 2]"), DecodeFault)
        assert isinstance(decode_frame("42"), DecodeFault)

    def test_deeply_nested_json_is_a_fault(self):
        msg = decode_frame("[" * 100000)
        assert isinstance(msg, DecodeFault)
        assert msg.reason.startswith("invalid json")

    def test_invalid_utf8_bytes(self):
        msg = decode_frame(b"\xff\xfe\xfd")
        assert isinstance(msg, DecodeFault)
        assert msg.reason == "invalid utf-8"

    def test_raw_preview_is_bounded(self):
        msg = decode_frame("x" * 5000)
        assert isinstance(msg, DecodeFault)
        assert len(msg.raw) <= 503


class TestOrderRecord:
    def test_from_wire_stringifies_values(self):
        order = OrderRecord.from_wire({"sz": 1, "avgPx": None, "lever": 10})
        assert order.sz == "1"
        assert order.avg_px == ""
        assert order.lever == "10"

    def test_to_dict_uses_wire_keys(self):
        order = OrderRecord.from_wire(ORDER_ENTRY)
        data = order.to_dict()
        assert data["instId"] == "BTC-USDT"
        assert data["avgPx"] == "95000"
        assert data["clOrdId"] == ""


class TestBuilders:
    def test_subscribe_request(self):
        assert json.loads(build_subscribe()) == {
            "op": "subscribe",
            "args": [{"channel": "orders", "instType": "ANY"}],
        }

    def test_subscribe_with_instrument(self):
        payload = json.loads(build_subscribe("orders", "SWAP", "BTC-USDT-SWAP"))
        assert payload["args"] == [{"channel": "orders", "instType": "SWAP", "instId": "BTC-USDT-SWAP"}]

    def test_login_request(self):
        payload = json.loads(build_login("key", "pass", "1735200000", "c2lnbg=="))
        assert payload == {
            "op": "login",
            "args": [{
                "apiKey": "key",
                "passphrase": "pass",
                "timestamp": "1735200000",
                "sign": "c2lnbg==",
            }],
        }
