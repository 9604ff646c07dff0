"""
Notification package.

Order rendering and dispatch, plus the HTTP sinks that deliver the result.
"""

from okx_relay.notify.dispatcher import OrderEventDispatcher, OrderNotification, render
from okx_relay.notify.sinks import HttpSink, WebhookSink, WechatTemplateSink, build_sink

__all__ = [
    "OrderEventDispatcher",
    "OrderNotification",
    "render",
    "HttpSink",
    "WebhookSink",
    "WechatTemplateSink",
    "build_sink",
]
