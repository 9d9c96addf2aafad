# === NAVMAP v1 ===
# {
#   "module": "Pacm.PackageInstall.settings",
#   "purpose": "Define installer configuration models, environment overrides, and the cached settings accessor",
#   "sections": [
#     {"id": "logging", "name": "LoggingConfiguration", "anchor": "LOG", "kind": "class"},
#     {"id": "download", "name": "DownloadConfiguration", "anchor": "DWN", "kind": "class"},
#     {"id": "settings", "name": "InstallSettings", "anchor": "SET", "kind": "class"},
#     {"id": "accessor", "name": "get_settings", "anchor": "ACC", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Configuration models for the package installer.

Settings are read from keyword arguments first and ``PACM_``-prefixed
environment variables second (nested fields use ``__``, for example
``PACM_DOWNLOAD__TIMEOUT_SEC=60``). Directories default to the per-user data
directory reported by :mod:`platformdirs`.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Dict, Optional

import platformdirs
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError

APP_NAME = "pacm"

__all__ = [
    "APP_NAME",
    "DownloadConfiguration",
    "InstallSettings",
    "LoggingConfiguration",
    "get_settings",
    "load_settings",
    "reset_settings",
]


class LoggingConfiguration(BaseModel):
    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    max_log_size_mb: int = Field(default=20, gt=0, description="Maximum size of rotated log files")
    backup_count: int = Field(default=5, ge=0, description="Rotated log files to keep")

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        upper = value.upper()
        if upper not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}")
        return upper

    model_config = {"validate_assignment": True}


class DownloadConfiguration(BaseModel):
    """HTTP behaviour of the download phase."""

    timeout_sec: float = Field(default=300.0, gt=0, le=3600)
    connect_timeout_sec: float = Field(default=10.0, gt=0.0, le=120.0)
    chunk_size: int = Field(default=64 * 1024, ge=1024, le=16 * 1024 * 1024)
    verify_checksums: bool = Field(default=True)
    follow_redirects: bool = Field(default=True)
    headers: Dict[str, str] = Field(
        default_factory=lambda: {"User-Agent": "pacm-installer/1.0"},
    )

    model_config = {"validate_assignment": True}


class InstallSettings(BaseSettings):
    """Top-level installer settings.

    Attributes:
        data_dir: Root for installer working data.
        install_dir: Default installation root; packages land in
            ``install_dir / <package id>`` unless options override it.
        staging_dir: Where downloaded archives are written.
        intermediate_dir: Where archives are extracted before finalization.
        max_workers: Size of the worker pool running blocking phases.
    """

    data_dir: Path = Field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))
    install_dir: Optional[Path] = None
    staging_dir: Optional[Path] = None
    intermediate_dir: Optional[Path] = None
    max_workers: int = Field(default=4, ge=1, le=64)
    download: DownloadConfiguration = Field(default_factory=DownloadConfiguration)
    logging: LoggingConfiguration = Field(default_factory=LoggingConfiguration)

    model_config = SettingsConfigDict(
        env_prefix="PACM_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def _derive_directories(self) -> "InstallSettings":
        if self.install_dir is None:
            self.install_dir = self.data_dir / "packages"
        if self.staging_dir is None:
            self.staging_dir = self.data_dir / "staging"
        if self.intermediate_dir is None:
            self.intermediate_dir = self.data_dir / "intermediate"
        return self


def load_settings(**overrides: Any) -> InstallSettings:
    """Build settings, translating pydantic failures into :class:`ConfigError`."""

    try:
        return InstallSettings(**overrides)
    except PydanticValidationError as exc:
        raise ConfigError(f"Invalid installer settings: {exc}") from exc


_settings: Optional[InstallSettings] = None
_settings_lock = threading.Lock()


def get_settings() -> InstallSettings:
    """Return the process-wide settings, loading them on first use."""

    global _settings
    with _settings_lock:
        if _settings is None:
            _settings = load_settings()
        return _settings


def reset_settings() -> None:
    """Forget cached settings so the next :func:`get_settings` re-reads the environment."""

    global _settings
    with _settings_lock:
        _settings = None
