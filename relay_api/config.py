"""Centralised configuration for the relay gateway, read from the environment and an optional .env file."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from relay_api.errors import RelayConfigError

DEFAULT_MCP_SERVER_URL = "http://localhost:8000/sse"
DEFAULT_PORT = 3000


def _int_setting(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise RelayConfigError(f"Environment variable {name} must be an integer, got {value!r}") from exc


def _float_setting(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        result = float(value)
    except ValueError as exc:
        raise RelayConfigError(f"Environment variable {name} must be a number, got {value!r}") from exc
    if result <= 0:
        raise RelayConfigError(f"Environment variable {name} must be positive, got {value!r}")
    return result


def _str_setting(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _optional_str_setting(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _list_setting(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class RelaySettings:
    """Runtime settings for the relay gateway."""

    mcp_server_url: str = DEFAULT_MCP_SERVER_URL
    mcp_message_url: Optional[str] = None
    webhook_url: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    task_timeout_seconds: float = 300.0
    task_poll_interval_seconds: float = 1.0
    webhook_timeout_seconds: float = 10.0
    upstream_connect_timeout_seconds: float = 10.0
    result_ttl_seconds: float = 600.0
    housekeeping_interval_seconds: float = 60.0
    sse_max_pending_events: int = 1000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    @property
    def message_url(self) -> str:
        """Task submission endpoint. Defaults to the stream URL with a /message suffix."""
        if self.mcp_message_url:
            return self.mcp_message_url
        return f"{self.mcp_server_url.rstrip('/')}/message"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "RelaySettings":
        """
        Build settings from os.environ. A .env file is loaded first, but variables that are
        already present in the environment win.
        """
        load_dotenv(dotenv_path=dotenv_path, override=False)
        defaults = cls()
        return cls(
            mcp_server_url=_str_setting("MCP_SERVER_URL", defaults.mcp_server_url),
            mcp_message_url=_optional_str_setting("MCP_MESSAGE_URL"),
            webhook_url=_optional_str_setting("WEBHOOK_URL"),
            host=_str_setting("HOST", defaults.host),
            port=_int_setting("PORT", defaults.port),
            task_timeout_seconds=_float_setting("RELAY_TASK_TIMEOUT_SECONDS", defaults.task_timeout_seconds),
            task_poll_interval_seconds=_float_setting("RELAY_TASK_POLL_INTERVAL_SECONDS", defaults.task_poll_interval_seconds),
            webhook_timeout_seconds=_float_setting("RELAY_WEBHOOK_TIMEOUT_SECONDS", defaults.webhook_timeout_seconds),
            upstream_connect_timeout_seconds=_float_setting("RELAY_UPSTREAM_CONNECT_TIMEOUT_SECONDS", defaults.upstream_connect_timeout_seconds),
            result_ttl_seconds=_float_setting("RELAY_RESULT_TTL_SECONDS", defaults.result_ttl_seconds),
            housekeeping_interval_seconds=_float_setting("RELAY_HOUSEKEEPING_INTERVAL_SECONDS", defaults.housekeeping_interval_seconds),
            sse_max_pending_events=_int_setting("RELAY_SSE_MAX_PENDING_EVENTS", defaults.sse_max_pending_events),
            cors_origins=_list_setting("RELAY_CORS_ORIGINS", defaults.cors_origins),
            log_level=_str_setting("RELAY_LOG_LEVEL", defaults.log_level).upper(),
            log_dir=_optional_str_setting("RELAY_LOG_DIR"),
        )
