"""
Order event dispatcher: OrderRecord -> human labels -> notification sink.

Each record is sent once. Records from one frame go out in array order on a
single background task, so a slow sink never stalls the socket reader.
Failures and timeouts are logged and never retried here.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional, Protocol, Set

from okx_relay.exchange.messages import OrderRecord
from okx_relay.infra.event_log import EventLog, LogCategory

ORDER_SIDE_LABELS = {
    "buy": "买入",
    "sell": "卖出",
}

ORDER_STATE_LABELS = {
    "live": "等待成交",
    "partially_filled": "部分成交",
    "filled": "完全成交",
    "canceled": "已撤销",
    "mmp_canceled": "做市商保护撤销",
}

INST_TYPE_LABELS = {
    "SPOT": "现货",
    "MARGIN": "杠杆",
    "SWAP": "永续合约",
    "FUTURES": "交割合约",
    "OPTION": "期权",
}

TIME_FORMAT = "%Y/%m/%d %H:%M:%S"


class NotificationSink(Protocol):
    async def send_order_notification(
        self, time: str, instrument: str, side_label: str, size_text: str, state_label: str
    ) -> bool: ...


@dataclass(frozen=True)
class OrderNotification:
    """Rendered fields for one order; the first five go to the sink."""
    time: str
    instrument: str
    side_label: str
    size_text: str
    state_label: str
    title: str = ""
    content: str = ""
    remark: str = ""


def side_label(side: str) -> str:
    return ORDER_SIDE_LABELS.get(side, side)


def state_label(state: str) -> str:
    return ORDER_STATE_LABELS.get(state, state)


def inst_type_label(inst_type: str) -> str:
    return INST_TYPE_LABELS.get(inst_type, inst_type)


def _is_nonzero(value: str) -> bool:
    if not value:
        return False
    try:
        return Decimal(value) != 0
    except InvalidOperation:
        return value != "0"


def format_size(order: OrderRecord) -> str:
    if _is_nonzero(order.avg_px):
        return f"{order.sz} @ {order.avg_px}"
    return order.sz


def format_time(epoch_ms: str) -> str:
    """Render exchange epoch milliseconds in local wall-clock time."""
    try:
        ts = int(epoch_ms) / 1000
        return datetime.fromtimestamp(ts).strftime(TIME_FORMAT)
    except (TypeError, ValueError, OverflowError, OSError):
        return epoch_ms or ""


def format_title(order: OrderRecord) -> str:
    return f"【OKX订单通知】{side_label(order.side)} {order.inst_id} - {state_label(order.state)}"


def format_content(order: OrderRecord) -> str:
    parts = [
        f"类型: {inst_type_label(order.inst_type)}",
        f"方向: {side_label(order.side)}",
        f"数量: {order.sz}",
    ]
    if _is_nonzero(order.px):
        parts.append(f"价格: {order.px}")
    if _is_nonzero(order.avg_px):
        parts.append(f"均价: {order.avg_px}")
    if _is_nonzero(order.acc_fill_sz):
        parts.append(f"成交: {order.acc_fill_sz}")
    return " | ".join(parts)


def format_remark(order: OrderRecord) -> str:
    parts = []
    if _is_nonzero(order.pnl):
        pnl_text = order.pnl if order.pnl.startswith("-") else f"+{order.pnl}"
        parts.append(f"盈亏: {pnl_text}")
    if _is_nonzero(order.fee):
        parts.append(f"手续费: {order.fee} {order.fee_ccy}".rstrip())
    if _is_nonzero(order.lever):
        parts.append(f"杠杆: {order.lever}x")
    parts.append(f"订单ID: {order.ord_id}")
    return " | ".join(parts)


def render(order: OrderRecord) -> OrderNotification:
    return OrderNotification(
        time=format_time(order.u_time),
        instrument=order.inst_id,
        side_label=side_label(order.side),
        size_text=format_size(order),
        state_label=state_label(order.state),
        title=format_title(order),
        content=format_content(order),
        remark=format_remark(order),
    )


class OrderEventDispatcher:
    """
    Calls the sink exactly once per OrderRecord.

    Usage:
        dispatcher = OrderEventDispatcher(sink, event_log)
        dispatcher.submit(batch.orders)   # from the socket reader
        await dispatcher.drain()          # on shutdown
    """

    def __init__(
        self,
        sink: NotificationSink,
        event_log: Optional[EventLog] = None,
        timeout_sec: float = 10.0,
        metrics: Optional[Any] = None,
        rich_metrics: Optional[Any] = None,
    ) -> None:
        self._sink = sink
        self._log = event_log or EventLog()
        self._timeout = timeout_sec
        self._metrics = metrics
        self._rich_metrics = rich_metrics
        self._tasks: Set[asyncio.Task] = set()
        self._stats = {"dispatched": 0, "succeeded": 0, "failed": 0}

    @property
    def stats(self) -> dict:
        return dict(self._stats)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def _count(self, key: str) -> None:
        if self._metrics is not None:
            await self._metrics.add_counter(key)

    async def dispatch(self, order: OrderRecord) -> bool:
        """Render one order and call the sink once. Never raises except on cancellation."""
        self._stats["dispatched"] += 1
        start = time.monotonic()
        try:
            note = render(order)
            ok = bool(await asyncio.wait_for(
                self._sink.send_order_notification(
                    note.time, note.instrument, note.side_label, note.size_text, note.state_label
                ),
                timeout=self._timeout,
            ))
            error = None
            outcome = "ok" if ok else "failed"
        except asyncio.TimeoutError:
            ok, error = False, f"timeout after {self._timeout}s"
            outcome = "timeout"
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            ok, error = False, str(exc)
            outcome = "error"

        elapsed_ms = round((time.monotonic() - start) * 1000, 1)
        if self._rich_metrics:
            self._rich_metrics.notifications.labels(outcome=outcome).inc()
            self._rich_metrics.notify_latency_ms.observe(elapsed_ms)
        if ok:
            self._stats["succeeded"] += 1
            self._log.notify("notify_sent", success=True, ord_id=order.ord_id, inst_id=order.inst_id,
                             state=order.state, elapsed_ms=elapsed_ms)
            await self._count("okx_notify_ok_total")
        else:
            self._stats["failed"] += 1
            if error:
                self._log.error("notify_error", error=error, category=LogCategory.NOTIFY,
                                ord_id=order.ord_id, inst_id=order.inst_id, elapsed_ms=elapsed_ms)
            else:
                self._log.notify("notify_failed", success=False, ord_id=order.ord_id,
                                 inst_id=order.inst_id, elapsed_ms=elapsed_ms)
            await self._count("okx_notify_failed_total")
        return ok

    async def dispatch_batch(self, orders: Iterable[OrderRecord]) -> int:
        """Send orders sequentially in the given order. Returns the success count."""
        delivered = 0
        for order in orders:
            lines = {}
            try:
                note = render(order)
                lines = {"title": note.title, "content": note.content, "remark": note.remark}
            except Exception as exc:
                self._log.error("order_render_error", error=exc, category=LogCategory.ORDER, ord_id=order.ord_id)
            self._log.order("order_update", ord_id=order.ord_id, inst_id=order.inst_id,
                            side=order.side, state=order.state, raw=order.to_dict(), **lines)
            await self._count("okx_orders_total")
            if self._rich_metrics:
                self._rich_metrics.order_updates.labels(inst_type=order.inst_type or "unknown",
                                                        state=order.state or "unknown").inc()
            if await self.dispatch(order):
                delivered += 1
        return delivered

    def submit(self, orders: Iterable[OrderRecord]) -> asyncio.Task:
        """Schedule one frame's orders on a background task; must be called on the loop."""
        task = asyncio.create_task(self.dispatch_batch(tuple(orders)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight frames; cancel whatever is left after timeout."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            self._log.system("dispatch_drain_cancelled", level=logging.WARNING, frames=len(pending))
