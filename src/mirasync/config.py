"""Configuration management for Mirasync."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_BASE_DIR_NAME = ".mirasync"
_CONFIG_FILE = "config.toml"
_LOG_DIR = "logs"


def get_base_dir() -> Path:
    """Return the base directory for all Mirasync runtime files (~/.mirasync/)."""
    return Path.home() / _BASE_DIR_NAME


# ---------------------------------------------------------------------------
# Config models
# ---------------------------------------------------------------------------


class StorageConfig(BaseModel):
    """Settings for the local library database."""

    db_filename: str = Field(default="library.db", description="SQLite file inside the base directory")


class SyncConfig(BaseModel):
    """Settings that control snapshot export and import."""

    export_filename: str = Field(default="mira-sync.json", description="Default snapshot file name")
    indent: int = Field(default=2, ge=0, description="JSON indentation of exported snapshots")


class LoggingConfig(BaseModel):
    """Settings for log output."""

    log_level: str = Field(default="info", description="Logging level")


class LanguageConfig(BaseModel):
    """Display language detection."""

    device_language: str = Field(
        default="",
        description="Locale code used when the language preference follows the system (empty = detect)",
    )


class AppConfig(BaseModel):
    """Top-level application configuration."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    language: LanguageConfig = Field(default_factory=LanguageConfig)

    # -- derived paths (not stored in TOML) --------------------------------

    @property
    def base_dir(self) -> Path:
        return get_base_dir()

    @property
    def db_path(self) -> Path:
        return self.base_dir / self.storage.db_filename

    @property
    def log_dir(self) -> Path:
        return self.base_dir / _LOG_DIR

    @property
    def export_path(self) -> Path:
        return self.base_dir / self.sync.export_filename


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


def _format_toml_value(value: object) -> str:
    """Format a single Python value as a TOML literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    msg = f"Unsupported TOML value type: {type(value)}"
    raise TypeError(msg)


def _dump_toml(config: AppConfig) -> str:
    """Serialize an AppConfig to a minimal TOML string.

    Only handles the flat two-level structure we actually use (tables with
    scalar values).
    """
    lines: list[str] = []
    sections = [
        ("storage", config.storage),
        ("sync", config.sync),
        ("logging", config.logging),
        ("language", config.language),
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
