"""Group chat application configuration.

Loads settings from two YAML files:
  * groupchat.settings.yaml: non-secret configuration
  * groupchat.secrets.yaml: secrets (never committed)

Either path can be overridden with the GROUPCHAT_SETTINGS / GROUPCHAT_SECRETS
environment variables, or passed explicitly to ``load_config``.
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

SETTINGS_FILE = Path("groupchat.settings.yaml")
SECRETS_FILE  = Path("groupchat.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class BootstrapUser(BaseModel):
    """A user created at startup. The password is hashed before storage."""
    username:     str
    password:     str
    display_name: Optional[str] = None
    role:         Literal["member", "admin", "superAdmin"] = "member"


class Secrets(BaseModel):
    jwt:             JWTSecrets          = Field(default_factory=JWTSecrets)
    bootstrap_users: List[BootstrapUser] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 8000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"


class AuthSettings(BaseModel):
    token_expire_minutes: int = Field(default=720, ge=1)


class ChatSettings(BaseModel):
    max_history:          int   = Field(default=1000, ge=1)
    join_history_limit:   int   = Field(default=50, ge=1)
    max_page_size:        int   = Field(default=100, ge=1)
    max_message_length:   int   = Field(default=1000, ge=1)
    max_emoji_length:     int   = Field(default=32, ge=1)
    send_timeout_seconds: float = Field(default=5.0, gt=0)
    outbox_size:          int   = Field(default=256, ge=1)


class PinSettings(BaseModel):
    sweep_interval_seconds: float = Field(default=60.0, gt=0)
    default_duration_days:  float = Field(default=1, gt=0)
    max_duration_days:      float = Field(default=30, gt=0)


class DefaultGroupSettings(BaseModel):
    enabled:     bool = True
    id:          str  = "general"
    name:        str  = "General Chat"
    description: str  = ""


class GroupSettings(BaseModel):
    default_max_members: int                  = Field(default=100, ge=1)
    default_group:       DefaultGroupSettings = Field(default_factory=DefaultGroupSettings)


class MediaSettings(BaseModel):
    upload_dir:     str       = "uploads"
    db_path:        str       = "media_metadata.duckdb"
    max_size_bytes: int       = Field(default=50 * 1024 * 1024, ge=1)
    image_types:    List[str] = Field(default_factory=lambda: [
        "image/jpeg", "image/png", "image/gif", "image/webp",
    ])
    video_types:    List[str] = Field(default_factory=lambda: [
        "video/mp4", "video/quicktime", "video/x-msvideo", "video/webm",
    ])

    @field_validator("image_types", "video_types")
    @classmethod
    def _lowercase_types(cls, value: List[str]) -> List[str]:
        return [v.lower().strip() for v in value]


class AppConfig(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    auth:    AuthSettings    = Field(default_factory=AuthSettings)
    chat:    ChatSettings    = Field(default_factory=ChatSettings)
    pins:    PinSettings     = Field(default_factory=PinSettings)
    groups:  GroupSettings   = Field(default_factory=GroupSettings)
    media:   MediaSettings   = Field(default_factory=MediaSettings)
    secrets: Secrets         = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object."""
    settings_path = Path(settings_path or os.environ.get("GROUPCHAT_SETTINGS", SETTINGS_FILE))
    secrets_path  = Path(secrets_path or os.environ.get("GROUPCHAT_SECRETS", SECRETS_FILE))

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    config = AppConfig(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, max_history=%d, bootstrap_users=%d)",
        config.server.host,
        config.server.port,
        config.chat.max_history,
        len(config.secrets.bootstrap_users),
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
    """Drop the cached configuration (for testing)."""
    global _config
    _config = None
