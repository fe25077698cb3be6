"""Talkeos application configuration.

Loads settings from a single YAML file:
  * talkeos.settings.yaml: server, chat and client configuration

Lookup order for the settings file:
  1. explicit ``settings_path`` argument to :func:`load_config`
  2. ``TALKEOS_SETTINGS`` environment variable
  3. ``./talkeos.settings.yaml``

A handful of environment variables override the file (``HOST``, ``PORT``,
``CORS_ORIGINS``, ``TALKEOS_ENV``).
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("talkeos.settings.yaml")
SETTINGS_ENV_VAR = "TALKEOS_SETTINGS"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Server settings
# ---------------------------------------------------------------------------


class CorsSettings(BaseModel):
    enabled:     bool      = True
    origins:     List[str] = Field(default_factory=lambda: ["*"])
    credentials: bool      = True


class WebSocketSettings(BaseModel):
    """Transport limits for chat connections (all durations in milliseconds)."""
    heartbeat_interval_ms: int = Field(default=30000, ge=0)
    max_message_size:      int = Field(default=65536, gt=0)
    connection_timeout_ms: int = Field(default=10000, ge=0)
    send_timeout_ms:       int = Field(default=5000, gt=0)


class SecuritySettings(BaseModel):
    max_room_name_length: int = Field(default=50, gt=0)
    max_username_length:  int = Field(default=20, gt=0)
    # 0 = no limit
    max_participants:     int = Field(default=0, ge=0)


class ServerSettings(BaseModel):
    host:      str               = "localhost"
    port:      int               = 8080
    cors:      CorsSettings      = Field(default_factory=CorsSettings)
    websocket: WebSocketSettings = Field(default_factory=WebSocketSettings)
    security:  SecuritySettings  = Field(default_factory=SecuritySettings)


# ---------------------------------------------------------------------------
# Chat settings
# ---------------------------------------------------------------------------


class ChatSettings(BaseModel):
    default_room:         str = "default"
    default_username:     str = "Anonymous"
    history_limit:        int = Field(default=100, gt=0)
    recent_history_limit: int = Field(default=50, gt=0)
    typing_timeout_ms:    int = Field(default=3000, gt=0)


# ---------------------------------------------------------------------------
# Client settings (served to browsers as-is)
# ---------------------------------------------------------------------------


class ClientRoomSettings(BaseModel):
    default_id:    str                                   = "default"
    id_generation: Literal["random", "timestamp", "custom"] = "random"


class ClientConnectionSettings(BaseModel):
    max_reconnect_attempts: int = 5
    reconnect_delay:        int = 3000
    max_reconnect_delay:    int = 30000


class ClientUiSettings(BaseModel):
    animation_duration: int  = 300
    max_message_width:  int  = 400
    auto_scroll:        bool = True
    typing_timeout:     int  = 3000


class ClientFeatureSettings(BaseModel):
    typing_indicators:  bool = True
    message_timestamps: bool = True
    user_avatars:       bool = True
    connection_status:  bool = True
    dark_mode:          bool = False
    message_reactions:  bool = False
    file_sharing:       bool = False


class ClientSettings(BaseModel):
    room:       ClientRoomSettings       = Field(default_factory=ClientRoomSettings)
    connection: ClientConnectionSettings = Field(default_factory=ClientConnectionSettings)
    ui:         ClientUiSettings         = Field(default_factory=ClientUiSettings)
    features:   ClientFeatureSettings    = Field(default_factory=ClientFeatureSettings)


# ---------------------------------------------------------------------------
# Development / logging
# ---------------------------------------------------------------------------


class DevelopmentSettings(BaseModel):
    debug:                  bool = True
    log_websocket_messages: bool = True


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if not isinstance(logging.getLevelName(value.upper()), int):
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class AppConfig(BaseModel):
    env:         Literal["development", "production"] = "development"
    server:      ServerSettings      = Field(default_factory=ServerSettings)
    chat:        ChatSettings        = Field(default_factory=ChatSettings)
    client:      ClientSettings      = Field(default_factory=ClientSettings)
    development: DevelopmentSettings = Field(default_factory=DevelopmentSettings)
    logging:     LoggingSettings     = Field(default_factory=LoggingSettings)
    static_dir:  str                 = "static"


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


def _apply_env_overrides(data: Dict[str, Any], environ: Dict[str, str]) -> Dict[str, Any]:
    """Fold HOST / PORT / CORS_ORIGINS / TALKEOS_ENV into the raw settings dict."""
    server = data.setdefault("server", {}) or {}
    data["server"] = server

    env = environ.get("TALKEOS_ENV")
    if env:
        data["env"] = env

    if data.get("env") == "production":
        # Production listens on every interface; only HOST can narrow it.
        server["host"] = "0.0.0.0"
        development = data.setdefault("development", {}) or {}
        development["debug"] = False
        development["log_websocket_messages"] = False
        data["development"] = development
        client = data.setdefault("client", {}) or {}
        features = client.setdefault("features", {}) or {}
        features["dark_mode"] = True
        client["features"] = features
        data["client"] = client

    if environ.get("HOST"):
        server["host"] = environ["HOST"]
    if environ.get("PORT"):
        server["port"] = environ["PORT"]
    if environ.get("CORS_ORIGINS"):
        cors = server.setdefault("cors", {}) or {}
        cors["origins"] = [o.strip() for o in environ["CORS_ORIGINS"].split(",") if o.strip()]
        server["cors"] = cors

    return data


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Union[str, Path]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> AppConfig:
    """Load settings from YAML and the environment into an *AppConfig*."""
    if environ is None:
        environ = dict(os.environ)
    if settings_path is None:
        settings_path = environ.get(SETTINGS_ENV_VAR) or SETTINGS_FILE

    data = _load_yaml(Path(settings_path))
    data = _apply_env_overrides(data, environ)

    config = AppConfig(**data)
    logger.info(
        "Settings loaded (env=%s, server=%s:%s, history_limit=%s)",
        config.env,
        config.server.host,
        config.server.port,
        config.chat.history_limit,
    )
    return config


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    return load_config()
