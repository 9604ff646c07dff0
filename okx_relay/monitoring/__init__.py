"""
Monitoring package.

Counters, health tracking and the HTTP status server.
"""

from okx_relay.monitoring.metrics import HealthChecker, HealthStatus, Metrics, start_http_server
from okx_relay.monitoring.metrics_rich import RichMetrics

__all__ = [
    "HealthChecker",
    "HealthStatus",
    "Metrics",
    "RichMetrics",
    "start_http_server",
]
