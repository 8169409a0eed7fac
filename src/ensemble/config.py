"""Configuration management for the Ensemble library cache."""

from __future__ import annotations

import os
import tomllib
from datetime import timedelta
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_BASE_DIR_NAME = ".ensemble"
_CONFIG_FILE = "config.toml"
_DB_FILE = "library.db"
_LOG_DIR = "logs"


def get_base_dir() -> Path:
    """Return the base directory for all Ensemble runtime files (~/.ensemble/)."""
    return Path.home() / _BASE_DIR_NAME


# ---------------------------------------------------------------------------
# Config models
# ---------------------------------------------------------------------------


class GeneralConfig(BaseModel):
    """Process-wide settings."""

    log_level: str = Field(default="info", description="Logging level")


class ServerConfig(BaseModel):
    """Music Assistant server connection."""

    url: str = Field(default="http://127.0.0.1:8095", description="Base URL of the Music Assistant server")
    token: SecretStr = Field(default=SecretStr(""), description="Long-lived access token (optional)")


class SyncConfig(BaseModel):
    """Settings that control library synchronisation."""

    stale_after_minutes: int = Field(default=5, ge=0, description="Cache age after which a sync refetches")
    interval_minutes: int = Field(default=5, ge=1, description="Minutes between background sync runs")
    album_artists_only: bool = Field(default=False, description="Only fetch artists that have albums")
    provider_instances: list[str] = Field(
        default_factory=list,
        description="Provider instances to sync individually (empty = one unscoped fetch)",
    )
    item_limit: int = Field(default=1000, ge=1, description="Fetch limit for albums/artists/audiobooks/playlists")
    track_limit: int = Field(default=5000, ge=1, description="Fetch limit for tracks")
    podcast_limit: int = Field(default=100, ge=1, description="Fetch limit for podcasts")

    @property
    def stale_after(self) -> timedelta:
        return timedelta(minutes=self.stale_after_minutes)


class AppConfig(BaseModel):
    """Top-level application configuration."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)

    # -- derived paths (not stored in TOML) --------------------------------

    @property
    def base_dir(self) -> Path:
        return get_base_dir()

    @property
    def db_path(self) -> Path:
        return self.base_dir / _DB_FILE

    @property
    def log_dir(self) -> Path:
        return self.base_dir / _LOG_DIR

    def is_server_configured(self) -> bool:
        """Return True if a server URL is set."""
        return bool(self.server.url.strip())


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


def ensure_dirs() -> None:
    """Create the base directory and log directory if they don't already exist."""
    base = get_base_dir()
    base.mkdir(mode=0o700, parents=True, exist_ok=True)
    (base / _LOG_DIR).mkdir(mode=0o700, parents=True, exist_ok=True)


def config_exists() -> bool:
    """Return True if a config file is present on disk."""
    return (get_base_dir() / _CONFIG_FILE).is_file()


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def load_config() -> AppConfig:
    """Load configuration from TOML, falling back to defaults if the file is missing."""
    path = get_base_dir() / _CONFIG_FILE
    if not path.is_file():
        return AppConfig()

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    return AppConfig.model_validate(raw)


def _quote(raw: str) -> str:
    escaped = raw.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _format_toml_value(value: object) -> str:
    """Format a single Python value as a TOML literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, SecretStr):
        return _quote(value.get_secret_value())
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, list):
        return "[" + ", ".join(_format_toml_value(v) for v in value) + "]"
    msg = f"Unsupported TOML value type: {type(value)}"
    raise TypeError(msg)


def _dump_toml(config: AppConfig) -> str:
    """Serialize an AppConfig to a minimal TOML string.

    Only handles the flat two-level structure we actually use (tables with
    scalar or list values).
    """
    lines: list[str] = []
    sections = [
        ("general", config.general),
        ("server", config.server),
        ("sync", config.sync),
    ]
    for section_name, section_model in sections:
        lines.append(f"[{section_name}]")
        for key, value in section_model.model_dump(mode="python").items():
            lines.append(f"{key} = {_format_toml_value(value)}")
        lines.append("")
    return "\n".join(lines)


def save_config(config: AppConfig) -> None:
    """Save configuration to TOML and restrict file permissions to owner-only."""
    ensure_dirs()
    path = get_base_dir() / _CONFIG_FILE
    path.write_text(_dump_toml(config), encoding="utf-8")
    os.chmod(path, 0o600)
