"""
Exchange package.

OKX private WebSocket: request signing, frame decoding and the connection
lifecycle manager.
"""

from okx_relay.exchange.connection import ConnectionConfig, ConnectionManager, ConnectionState
from okx_relay.exchange.messages import OrderRecord, decode_frame
from okx_relay.exchange.signer import Signer

__all__ = [
    "ConnectionConfig",
    "ConnectionManager",
    "ConnectionState",
    "OrderRecord",
    "decode_frame",
    "Signer",
]
