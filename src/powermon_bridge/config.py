"""Bridge configuration.

Values come from ``POWERMON_*`` environment variables; CLI options
override them.
"""

from __future__ import annotations

import logging
import os
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .sdk.base import DEFAULT_LIBRARY
from .streaming import DEFAULT_INTERVAL_MS

ENV_SDK = "POWERMON_SDK"
ENV_LOG_LEVEL = "POWERMON_LOG_LEVEL"
ENV_STREAM_INTERVAL = "POWERMON_STREAM_INTERVAL_MS"
ENV_SHUTDOWN_TIMEOUT = "POWERMON_SHUTDOWN_DISCONNECT_TIMEOUT"


class BridgeConfig(BaseModel):
    """Runtime settings for the stdio bridge."""

    sdk: str = DEFAULT_LIBRARY
    log_level: str = "WARNING"
    stream_interval_ms: int = Field(default=DEFAULT_INTERVAL_MS, ge=0)
    shutdown_disconnect_timeout: float = Field(default=5.0, ge=0)

    @field_validator("log_level")
    @classmethod
    def _valid_level(cls, value: str) -> str:
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @classmethod
    def from_env(cls, **overrides: Any) -> BridgeConfig:
        """Build from the environment; ``None`` overrides are ignored."""
        values: dict[str, Any] = {}
        if sdk := os.getenv(ENV_SDK):
            values["sdk"] = sdk
        if level := os.getenv(ENV_LOG_LEVEL):
            values["log_level"] = level
        if interval := os.getenv(ENV_STREAM_INTERVAL):
            values["stream_interval_ms"] = interval
        if timeout := os.getenv(ENV_SHUTDOWN_TIMEOUT):
            values["shutdown_disconnect_timeout"] = timeout
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls.model_validate(values)

    @property
    def level(self) -> int:
        return logging.getLevelName(self.log_level)
