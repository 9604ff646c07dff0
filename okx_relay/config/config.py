"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


LIVE_WS_URL = "wss://ws.okx.com:8443/ws/v5/private"
SIMULATED_WS_URL = "wss://wspap.okx.com:8443/ws/v5/private?brokerId=9999"


class ConfigError(ValueError):
    """Raised when a required setting is missing or out of range."""


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


@dataclass(frozen=True)
class Settings:
    api_key: str
    secret_key: str
    passphrase: str
    simulated: bool
    ws_url_override: str | None
    heartbeat_sec: float
    reconnect_delay_sec: float
    connect_timeout_sec: float
    liveness_timeout_sec: float  # 0 disables the watchdog
    notify_type: str  # wechat, generic
    notify_timeout_sec: float
    wechat_api_url: str | None
    wechat_openid: str | None
    wechat_template_id: str | None
    webhook_url: str | None
    http_port: int
    http_token: str | None
    log_file: str | None
    log_level: str

    @property
    def ws_url(self) -> str:
        if self.ws_url_override:
            return self.ws_url_override
        return SIMULATED_WS_URL if self.simulated else LIVE_WS_URL

    def dump(self) -> dict:
        """Return settings with credentials masked, for startup logging."""
        data = self.__dict__.copy()
        for key in ("api_key", "secret_key", "passphrase", "http_token"):
            if data.get(key):
                data[key] = "***"
        data["ws_url"] = self.ws_url
        return data

    @classmethod
    def load(cls) -> "Settings":
        def _int_env(key: str, default: int) -> int:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return int(raw)

        def _float_env(key: str, default: float) -> float:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return float(raw)

        cfg = cls(
            api_key=os.getenv("OKX_API_KEY", ""),
            secret_key=os.getenv("OKX_SECRET_KEY", ""),
            passphrase=os.getenv("OKX_PASSPHRASE", ""),
            simulated=env_bool("OKX_SIMULATED", False),
            ws_url_override=os.getenv("OKX_WS_URL") or None,
            heartbeat_sec=_float_env("OKX_HEARTBEAT_SEC", 25.0),
            reconnect_delay_sec=_float_env("OKX_RECONNECT_DELAY_SEC", 5.0),
            connect_timeout_sec=_float_env("OKX_CONNECT_TIMEOUT_SEC", 10.0),
            liveness_timeout_sec=_float_env("OKX_LIVENESS_TIMEOUT_SEC", 0.0),
            notify_type=os.getenv("NOTIFY_TYPE", "wechat").lower(),
            notify_timeout_sec=_float_env("NOTIFY_TIMEOUT_SEC", 10.0),
            wechat_api_url=os.getenv("WECHAT_API_URL") or None,
            wechat_openid=os.getenv("WECHAT_OPENID") or None,
            wechat_template_id=os.getenv("WECHAT_TEMPLATE_ID") or None,
            webhook_url=os.getenv("WEBHOOK_URL") or None,
            http_port=_int_env("RELAY_HTTP_PORT", 3000),
            http_token=os.getenv("RELAY_HTTP_TOKEN") or None,
            log_file=os.getenv("RELAY_LOG_FILE", "logs/okx.log") or None,
            log_level=os.getenv("RELAY_LOG_LEVEL", "INFO").upper(),
        )
        cfg._validate()
        return cfg

    def _validate(self) -> None:
        if self.heartbeat_sec <= 0:
            raise ConfigError("OKX_HEARTBEAT_SEC must be > 0")
        if self.reconnect_delay_sec < 0:
            raise ConfigError("OKX_RECONNECT_DELAY_SEC must be >= 0")
        if self.connect_timeout_sec <= 0:
            raise ConfigError("OKX_CONNECT_TIMEOUT_SEC must be > 0")
        if self.liveness_timeout_sec < 0:
            raise ConfigError("OKX_LIVENESS_TIMEOUT_SEC must be >= 0")
        if self.notify_timeout_sec <= 0:
            raise ConfigError("NOTIFY_TIMEOUT_SEC must be > 0")
        if self.notify_type not in {"wechat", "generic"}:
            raise ConfigError(f"NOTIFY_TYPE must be wechat or generic, got {self.notify_type!r}")
        if self.http_port < 0:
            raise ConfigError("RELAY_HTTP_PORT must be >= 0")
