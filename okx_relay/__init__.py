"""
OKX order relay: private order-channel subscription forwarded to WeChat or a webhook.
"""

__version__ = "0.1.0"
