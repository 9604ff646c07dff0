"""
Labelled Prometheus metrics for the relay.

Organized into: connection, handshake, orders, notifications.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram
from typing import Optional


class RichMetrics:
    """Labelled counters and histograms exported next to the plain /metrics counters."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()

        # === Connection ===
        self.ws_state = Gauge(
            'okx_ws_state',
            'Connection state ordinal (0=disconnected .. 4=subscribed)',
            registry=reg
        )
        self.ws_connects = Counter(
            'okx_ws_connects_total',
            'Socket open attempts',
            labelnames=['outcome'],
            registry=reg
        )
        self.ws_closes = Counter(
            'okx_ws_closes_total',
            'Socket closes by close code',
            labelnames=['code'],
            registry=reg
        )
        self.ws_frames = Counter(
            'okx_ws_frames_total',
            'Inbound frames by classification',
            labelnames=['kind'],
            registry=reg
        )

        # === Handshake ===
        self.logins = Counter(
            'okx_logins_total',
            'Login acknowledgements',
            labelnames=['result'],
            registry=reg
        )

        # === Orders ===
        self.order_updates = Counter(
            'okx_order_updates_total',
            'Order updates received',
            labelnames=['inst_type', 'state'],
            registry=reg
        )

        # === Notifications ===
        self.notifications = Counter(
            'okx_notifications_total',
            'Sink calls by outcome',
            labelnames=['outcome'],
            registry=reg
        )
        self.notify_latency_ms = Histogram(
            'okx_notify_latency_ms',
            'Sink call duration (milliseconds)',
            buckets=[50, 100, 250, 500, 1000, 2500, 5000, 10000],
            registry=reg
        )

        self.registry = reg

    def get_registry(self):
        """Return the Prometheus registry for export."""
        return self.registry
