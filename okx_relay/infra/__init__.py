"""
Infrastructure package.

This package contains logging configuration and the category-tagged event log.
"""

from okx_relay.infra.event_log import EventLog, LogCategory
from okx_relay.infra.logging_cfg import build_logger, log_event

__all__ = [
    "EventLog",
    "LogCategory",
    "build_logger",
    "log_event",
]
