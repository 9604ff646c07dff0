"""
Wire messages for the OKX private WebSocket.

Inbound frames are classified once by decode_frame() into one of:

    Pong, LoginResult, SubscribeAck, ErrorEvent, OrderBatch, DecodeFault

so the connection manager never probes raw JSON fields itself. Outbound
builders produce the login and subscribe requests.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

PING = "ping"
PONG = "pong"
ORDERS_CHANNEL = "orders"
RAW_PREVIEW_CHARS = 500


@dataclass(frozen=True)
class OrderRecord:
    """One order update from the orders channel. Numeric fields stay as exchange strings."""
    inst_type: str = ""
    inst_id: str = ""
    ord_id: str = ""
    cl_ord_id: str = ""
    side: str = ""
    pos_side: str = ""
    ord_type: str = ""
    td_mode: str = ""
    sz: str = ""
    px: str = ""
    acc_fill_sz: str = ""
    fill_px: str = ""
    fill_sz: str = ""
    avg_px: str = ""
    state: str = ""
    fee: str = ""
    fee_ccy: str = ""
    pnl: str = ""
    lever: str = ""
    category: str = ""
    u_time: str = ""
    c_time: str = ""

    # wire key -> attribute
    WIRE_FIELDS = {
        "instType": "inst_type",
        "instId": "inst_id",
        "ordId": "ord_id",
        "clOrdId": "cl_ord_id",
        "side": "side",
        "posSide": "pos_side",
        "ordType": "ord_type",
        "tdMode": "td_mode",
        "sz": "sz",
        "px": "px",
        "accFillSz": "acc_fill_sz",
        "fillPx": "fill_px",
        "fillSz": "fill_sz",
        "avgPx": "avg_px",
        "state": "state",
        "fee": "fee",
        "feeCcy": "fee_ccy",
        "pnl": "pnl",
        "lever": "lever",
        "category": "category",
        "uTime": "u_time",
        "cTime": "c_time",
    }

    @classmethod
    def from_wire(cls, entry: Dict[str, Any]) -> "OrderRecord":
        kwargs = {}
        for wire_key, attr in cls.WIRE_FIELDS.items():
            value = entry.get(wire_key)
            kwargs[attr] = "" if value is None else str(value)
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, str]:
        return {wire_key: getattr(self, attr) for wire_key, attr in self.WIRE_FIELDS.items()}


@dataclass(frozen=True)
class Pong:
    pass


@dataclass(frozen=True)
class LoginResult:
    success: bool
    code: str = ""
    msg: str = ""
    conn_id: str = ""


@dataclass(frozen=True)
class SubscribeAck:
    arg: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ErrorEvent:
    code: str = ""
    msg: str = ""


@dataclass(frozen=True)
class OrderBatch:
    orders: Tuple[OrderRecord, ...] = ()


@dataclass(frozen=True)
class DecodeFault:
    reason: str
    raw: str = ""


Inbound = Union[Pong, LoginResult, SubscribeAck, ErrorEvent, OrderBatch, DecodeFault]


def _preview(raw: str) -> str:
    if len(raw) > RAW_PREVIEW_CHARS:
        return raw[:RAW_PREVIEW_CHARS] + "..."
    return raw


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def decode_frame(frame: Union[str, bytes]) -> Inbound:
    """Classify one inbound frame. Never raises."""
    if isinstance(frame, (bytes, bytearray)):
        try:
            frame = bytes(frame).decode("utf-8")
        except UnicodeDecodeError:
            return DecodeFault("invalid utf-8", _preview(repr(frame)))

    if frame == PONG:
        return Pong()

    try:
        message = json.loads(frame)
    except (ValueError, TypeError, RecursionError) as exc:
        return DecodeFault(f"invalid json: {exc}", _preview(str(frame)))

    if not isinstance(message, dict):
        return DecodeFault("not a json object", _preview(frame))

    event = message.get("event")
    if event == "login":
        code = _text(message.get("code"))
        return LoginResult(
            success=code == "0",
            code=code,
            msg=_text(message.get("msg")),
            conn_id=_text(message.get("connId")),
        )
    if event == "subscribe":
        arg = message.get("arg")
        return SubscribeAck(arg=arg if isinstance(arg, dict) else {})
    if event == "error":
        return ErrorEvent(code=_text(message.get("code")), msg=_text(message.get("msg")))

    arg = message.get("arg")
    data = message.get("data")
    if isinstance(arg, dict) and arg.get("channel") == ORDERS_CHANNEL and data is not None:
        if not isinstance(data, list):
            return DecodeFault("orders data is not a list", _preview(frame))
        if not all(isinstance(entry, dict) for entry in data):
            return DecodeFault("orders data entry is not an object", _preview(frame))
        return OrderBatch(orders=tuple(OrderRecord.from_wire(entry) for entry in data))

    return DecodeFault("unrecognized message shape", _preview(frame))


def build_login(api_key: str, passphrase: str, timestamp: str, sign: str) -> str:
    return json.dumps({
        "op": "login",
        "args": [{
            "apiKey": api_key,
            "passphrase": passphrase,
            "timestamp": timestamp,
            "sign": sign,
        }],
    })


def build_subscribe(channel: str = ORDERS_CHANNEL, inst_type: str = "ANY", inst_id: Optional[str] = None) -> str:
    arg: Dict[str, str] = {"channel": channel, "instType": inst_type}
    if inst_id:
        arg["instId"] = inst_id
    return json.dumps({"op": "subscribe", "args": [arg]})

