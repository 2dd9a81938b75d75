"""Presence relay configuration.

Loads settings from a YAML file:
  * relay.settings.yaml: non-secret configuration

The file location can be overridden with the ``RELAY_SETTINGS_FILE``
environment variable. Every value has a default, so a missing file simply
yields the default configuration.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("relay.settings.yaml")
SETTINGS_ENV_VAR = "RELAY_SETTINGS_FILE"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 3000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    socketio_path:   str       = "socket.io"
    ping_interval:   float     = 25.0
    ping_timeout:    float     = 20.0


class BackendSettings(BaseModel):
    """Where the system of record lives and how long we wait for it."""
    base_url:            str   = "http://localhost:8080"
    timeout_seconds:     float = 5.0
    status_path:         str   = "/user/status/update"
    online_friends_path: str   = "/friend/list/online"
    reissue_path:        str   = "/reissue"

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeout_seconds must be positive")
        return value


class PresenceSettings(BaseModel):
    grace_period_seconds:   float = 2.5
    refresh_margin_seconds: float = 60.0
    friend_message_event:   Literal["friend_message", "message_alarm"] = "friend_message"

    @field_validator("grace_period_seconds")
    @classmethod
    def _positive_grace(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("grace_period_seconds must be positive")
        return value

    @field_validator("refresh_margin_seconds")
    @classmethod
    def _non_negative_margin(cls, value: float) -> float:
        if value < 0:
            raise ValueError("refresh_margin_seconds must not be negative")
        return value


class LoggingSettings(BaseModel):
    level: str = "info"


class AppConfig(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    backend:  BackendSettings  = Field(default_factory=BackendSettings)
    presence: PresenceSettings = Field(default_factory=PresenceSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load settings into a single *AppConfig* object.

    Resolution order for the settings file: explicit ``settings_path``,
    then ``$RELAY_SETTINGS_FILE``, then ``./relay.settings.yaml``.
    """
    if settings_path is None:
        env_path = os.environ.get(SETTINGS_ENV_VAR)
        settings_path = Path(env_path) if env_path else SETTINGS_FILE

    config = AppConfig(**_load_yaml(Path(settings_path)))
    logger.info(
        "Settings loaded (server=%s:%s, backend=%s, grace=%ss, refresh_margin=%ss)",
        config.server.host,
        config.server.port,
        config.backend.base_url,
        config.presence.grace_period_seconds,
        config.presence.refresh_margin_seconds,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() reloads it."""
    global _config
    _config = None
