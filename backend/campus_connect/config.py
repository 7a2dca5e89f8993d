"""CampusConnect application configuration.

Loads settings from a single YAML file:
  * campus.settings.yaml  (optional)

Every section has defaults, so a missing file yields a working setup
backed by ``campus_connect.duckdb`` in the current directory.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("campus.settings.yaml")


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
    port:            int       = 8000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"


class DatabaseSettings(BaseModel):
    path: str = "campus_connect.duckdb"


class IdentitySettings(BaseModel):
    """Login credential rules."""
    admin_credential:    str = "admin123"
    credential_digits:   int = 10
    avatar_url_template: str = "https://api.dicebear.com/7.x/avataaars/svg?seed={name}"


class ChatSettings(BaseModel):
    lookback_days:          float = 2.0
    default_group_room:     str   = "General Campus"
    default_anonymous_room: str   = "Anonymous Hall"
    dm_separator:           str   = ":"
    anonymous_label:        str   = "Anonymous Student"
    admin_ghost_label:      str   = "Admin (Ghost)"
    unknown_sender_label:   str   = "Unknown"
    max_message_length:     int   = 4000
    directory_search_limit: int   = 5
    directory_min_query:    int   = 3

    @field_validator("lookback_days")
    @classmethod
    def _positive_lookback(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("lookback_days must be positive")
        return v


class PresenceSettings(BaseModel):
    stale_after_seconds:    int = 120
    sweep_interval_seconds: int = 30


class RealtimeSettings(BaseModel):
    """Change feed buffering, request timeouts and reconnect backoff."""
    queue_size:              int   = 1000
    request_timeout_seconds: float = 10.0
    reconnect_base_delay_ms: int   = 250
    reconnect_max_delay_ms:  int   = 8000
    reconnect_jitter_ms:     int   = 100
    reconnect_max_attempts:  int   = 6


class SessionSettings(BaseModel):
    path: str = ".campus_session.json"
    key:  str = "cc_user"


class AppSettings(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    identity: IdentitySettings = Field(default_factory=IdentitySettings)
    chat:     ChatSettings     = Field(default_factory=ChatSettings)
    presence: PresenceSettings = Field(default_factory=PresenceSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    session:  SessionSettings  = Field(default_factory=SessionSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(path: Path = SETTINGS_FILE) -> AppSettings:
    """Load *campus.settings.yaml* into an *AppSettings* object."""
    app_settings = AppSettings(**_load_yaml(path))
    logger.info(
        "Settings loaded (server=%s:%s, database=%s, lookback_days=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.database.path,
        app_settings.chat.lookback_days,
    )
    return app_settings


@lru_cache()
def get_config() -> AppSettings:
    return load_settings()


def reset_config() -> None:
    """Drop the cached settings so the next get_config() re-reads the file."""
    get_config.cache_clear()
