"""
Configuration package.

This package contains settings loading and startup validation.
"""

from okx_relay.config.config import ConfigError, Settings
from okx_relay.config.config_validator import ConfigValidator, validate_and_log

__all__ = [
    "ConfigError",
    "Settings",
    "ConfigValidator",
    "validate_and_log",
]
