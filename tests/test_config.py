"""
Tests for Settings loading and ConfigValidator.
"""
import logging

import pytest

from okx_relay.config.config import LIVE_WS_URL, SIMULATED_WS_URL, ConfigError, Settings, env_bool
from okx_relay.config.config_validator import ConfigValidator, ValidationSeverity, validate_and_log

ENV_KEYS = [
    "OKX_API_KEY", "OKX_SECRET_KEY", "OKX_PASSPHRASE", "OKX_SIMULATED", "OKX_WS_URL",
    "OKX_HEARTBEAT_SEC", "OKX_RECONNECT_DELAY_SEC", "OKX_CONNECT_TIMEOUT_SEC",
    "OKX_LIVENESS_TIMEOUT_SEC", "NOTIFY_TYPE", "NOTIFY_TIMEOUT_SEC", "WECHAT_API_URL",
    "WECHAT_OPENID", "WECHAT_TEMPLATE_ID", "WEBHOOK_URL", "RELAY_HTTP_PORT",
    "RELAY_HTTP_TOKEN", "RELAY_LOG_FILE", "RELAY_LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("OKX_API_KEY", "k")
    monkeypatch.setenv("OKX_SECRET_KEY", "s")
    monkeypatch.setenv("OKX_PASSPHRASE", "p")
    return monkeypatch


class TestSettingsLoad:
    def test_defaults(self, clean_env):
        cfg = Settings.load()
        assert cfg.heartbeat_sec == 25.0
        assert cfg.reconnect_delay_sec == 5.0
        assert cfg.notify_timeout_sec == 10.0
        assert cfg.liveness_timeout_sec == 0.0
        assert cfg.notify_type == "wechat"
        assert cfg.http_port == 3000
        assert cfg.log_file == "logs/okx.log"
        assert cfg.ws_url == LIVE_WS_URL

    def test_simulated_endpoint(self, clean_env):
        clean_env.setenv("OKX_SIMULATED", "true")
        assert Settings.load().ws_url == SIMULATED_WS_URL

    def test_url_override_wins(self, clean_env):
        clean_env.setenv("OKX_SIMULATED", "1")
        clean_env.setenv("OKX_WS_URL", "wss://proxy.local/ws")
        assert Settings.load().ws_url == "wss://proxy.local/ws"

    def test_numeric_overrides(self, clean_env):
        clean_env.setenv("OKX_HEARTBEAT_SEC", "20")
        clean_env.setenv("RELAY_HTTP_PORT", "0")
        cfg = Settings.load()
        assert cfg.heartbeat_sec == 20.0
        assert cfg.http_port == 0

    def test_unknown_notify_type_rejected(self, clean_env):
        clean_env.setenv("NOTIFY_TYPE", "sms")
        with pytest.raises(ConfigError):
            Settings.load()

    def test_non_positive_heartbeat_rejected(self, clean_env):
        clean_env.setenv("OKX_HEARTBEAT_SEC", "0")
        with pytest.raises(ConfigError):
            Settings.load()

    def test_garbage_number_raises_value_error(self, clean_env):
        clean_env.setenv("OKX_RECONNECT_DELAY_SEC", "soon")
        with pytest.raises(ValueError):
            Settings.load()

    def test_dump_masks_credentials(self, make_settings):
        dump = make_settings(http_token="tok").dump()
        assert dump["api_key"] == "***"
        assert dump["secret_key"] == "***"
        assert dump["passphrase"] == "***"
        assert dump["http_token"] == "***"
        assert dump["ws_url"] == SIMULATED_WS_URL

    def test_env_bool(self, monkeypatch):
        monkeypatch.setenv("FLAG_X", "Yes")
        assert env_bool("FLAG_X", False) is True
        monkeypatch.setenv("FLAG_X", "off")
        assert env_bool("FLAG_X", True) is False
        monkeypatch.delenv("FLAG_X")
        assert env_bool("FLAG_X", True) is True


class TestConfigValidator:
    def test_complete_config_is_valid(self, make_settings):
        result = ConfigValidator().validate(make_settings())
        assert result.valid
        assert not result.has_errors()

    def test_missing_credentials_are_errors(self, make_settings):
        result = ConfigValidator().validate(make_settings(api_key="", passphrase=" "))
        assert not result.valid
        assert {i.field for i in result.get_errors()} == {"api_key", "passphrase"}

    def test_heartbeat_out_of_range(self, make_settings):
        result = ConfigValidator().validate(make_settings(heartbeat_sec=45.0))
        assert not result.valid
        assert result.get_errors()[0].field == "heartbeat_sec"

    def test_missing_notify_target_warns(self, make_settings):
        result = ConfigValidator().validate(make_settings(notify_type="generic", webhook_url=None))
        assert result.valid
        assert any(i.field == "webhook_url" and i.severity == ValidationSeverity.WARNING
                   for i in result.issues)

    def test_risky_configs_warn(self, make_settings):
        result = ConfigValidator().validate(make_settings(
            reconnect_delay_sec=0.5, liveness_timeout_sec=20.0, http_port=3000, http_token=None,
        ))
        assert result.valid
        assert {i.field for i in result.get_warnings()} == {
            "reconnect_delay_sec", "liveness_timeout_sec", "http_token",
        }

    def test_validate_and_log(self, make_settings, caplog):
        log = logging.getLogger("test_config.validator")
        with caplog.at_level(logging.INFO, logger="test_config.validator"):
            assert validate_and_log(make_settings(secret_key=""), log) is False
        assert any("CONFIG ERROR" in r.getMessage() for r in caplog.records)
