"""Roomchat application configuration.

Loads settings from a single YAML file:
  * roomchat.settings.yaml: server, logging, rooms, history and auth settings

The path can be overridden with the ROOMCHAT_SETTINGS environment variable.
Relative database paths are resolved against the directory holding the
settings file, so the service behaves the same regardless of the cwd.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("roomchat.settings.yaml")
SETTINGS_ENV_VAR = "ROOMCHAT_SETTINGS"

DEFAULT_ROOMS = ["devops", "cloud computing", "covid19", "sports", "nodeJS"]


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _resolve_db_path(db_path: str, base_dir: Path) -> str:
    # DuckDB in-memory databases are not files
    if db_path == ":memory:" or Path(db_path).is_absolute():
        return db_path
    return str(base_dir / db_path)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 3000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    send_queue_size: int       = 1000


class LoggingSettings(BaseModel):
    level: str = "info"


class RoomCatalogSettings(BaseModel):
    """Fixed catalog of joinable rooms."""
    catalog: List[str] = Field(default_factory=lambda: list(DEFAULT_ROOMS))

    @field_validator("catalog")
    @classmethod
    def _strip_blank_rooms(cls, value: List[str]) -> List[str]:
        return [room for room in value if room and room.strip()]


class HistorySettings(BaseModel):
    db_path:       str = "chat_history.duckdb"
    default_limit: int = 100
    max_limit:     int = 500


class AuthSettings(BaseModel):
    db_path:           str = "accounts.duckdb"
    pbkdf2_iterations: int = 200_000


class AppSettings(BaseModel):
    server:  ServerSettings      = Field(default_factory=ServerSettings)
    logging: LoggingSettings     = Field(default_factory=LoggingSettings)
    rooms:   RoomCatalogSettings = Field(default_factory=RoomCatalogSettings)
    history: HistorySettings     = Field(default_factory=HistorySettings)
    auth:    AuthSettings        = Field(default_factory=AuthSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppSettings:
    """Load settings from YAML into an *AppSettings* object.

    Args:
        settings_path: Explicit settings file. Falls back to the
            ROOMCHAT_SETTINGS environment variable, then to
            ``roomchat.settings.yaml`` in the working directory.
    """
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))
    settings_path = Path(settings_path)

    settings = AppSettings(**_load_yaml(settings_path))

    base_dir = settings_path.resolve().parent
    settings.history.db_path = _resolve_db_path(settings.history.db_path, base_dir)
    settings.auth.db_path = _resolve_db_path(settings.auth.db_path, base_dir)

    logger.info(
        "Settings loaded (server=%s:%s, rooms=%d, history=%s)",
        settings.server.host,
        settings.server.port,
        len(settings.rooms.catalog),
        settings.history.db_path,
    )
    return settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Get the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(settings: AppSettings) -> None:
    """Replace the process-wide settings (used by tests)."""
    global _config
    _config = settings


def reset_config() -> None:
    """Forget cached settings so the next get_config() reloads them."""
    global _config
    _config = None
