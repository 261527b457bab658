"""Tests for bridge configuration."""

import logging

import pytest
from pydantic import ValidationError

from powermon_bridge.config import BridgeConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "POWERMON_SDK",
        "POWERMON_LOG_LEVEL",
        "POWERMON_STREAM_INTERVAL_MS",
        "POWERMON_SHUTDOWN_DISCONNECT_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)


class TestBridgeConfig:
    """Tests for BridgeConfig."""

    def test_defaults(self):
        config = BridgeConfig.from_env()
        assert config.sdk == "powermon_bridge.sdk.simulator"
        assert config.log_level == "WARNING"
        assert config.level == logging.WARNING
        assert config.stream_interval_ms == 2000
        assert config.shutdown_disconnect_timeout == 5.0

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("POWERMON_SDK", "vendor.powermon")
        monkeypatch.setenv("POWERMON_LOG_LEVEL", "debug")
        monkeypatch.setenv("POWERMON_STREAM_INTERVAL_MS", "250")
        monkeypatch.setenv("POWERMON_SHUTDOWN_DISCONNECT_TIMEOUT", "0.5")

        config = BridgeConfig.from_env()
        assert config.sdk == "vendor.powermon"
        assert config.log_level == "DEBUG"
        assert config.stream_interval_ms == 250
        assert config.shutdown_disconnect_timeout == 0.5

    def test_overrides_win(self, monkeypatch):
        """Explicit values beat the environment; None means not given."""
        monkeypatch.setenv("POWERMON_LOG_LEVEL", "ERROR")
        config = BridgeConfig.from_env(log_level="info", sdk=None)
        assert config.log_level == "INFO"
        assert config.sdk == "powermon_bridge.sdk.simulator"

    def test_invalid_level(self):
        with pytest.raises(ValidationError, match="Unknown log level"):
            BridgeConfig(log_level="chatty")

    def test_negative_interval(self, monkeypatch):
        monkeypatch.setenv("POWERMON_STREAM_INTERVAL_MS", "-1")
        with pytest.raises(ValidationError):
            BridgeConfig.from_env()
