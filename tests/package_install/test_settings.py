# === NAVMAP v1 ===
# {
#   "module": "tests.package_install.test_settings",
#   "purpose": "Tests for installer settings and environment overrides",
#   "sections": [
#     {"id": "defaults", "name": "Defaults", "anchor": "defaults", "kind": "section"},
#     {"id": "overrides", "name": "Overrides", "anchor": "overrides", "kind": "section"}
#   ]
# }
# === /NAVMAP ===

"""Tests for installer settings and environment overrides."""

from __future__ import annotations

from pathlib import Path

import pytest

from Pacm.PackageInstall.errors import ConfigError
from Pacm.PackageInstall.settings import get_settings, load_settings, reset_settings


# --- Defaults ---


def test_directories_are_derived_from_data_dir(tmp_path: Path) -> None:
    """Install, staging and intermediate roots default to children of the data dir."""

    settings = load_settings(data_dir=tmp_path)

    assert settings.install_dir == tmp_path / "packages"
    assert settings.staging_dir == tmp_path / "staging"
    assert settings.intermediate_dir == tmp_path / "intermediate"
    assert settings.max_workers == 4
    assert settings.download.verify_checksums


def test_get_settings_is_cached_until_reset(monkeypatch, tmp_path: Path) -> None:
    """The process-wide settings are rebuilt only after reset_settings()."""

    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("PACM_MAX_WORKERS", "8")
    reset_settings()

    assert get_settings() is not first
    assert get_settings().max_workers == 8


# --- Overrides ---


def test_environment_overrides_use_prefix_and_nested_delimiter(monkeypatch, tmp_path: Path) -> None:
    """PACM_ variables override fields; a double underscore reaches nested sections."""

    monkeypatch.setenv("PACM_INSTALL_DIR", str(tmp_path / "plugins"))
    monkeypatch.setenv("PACM_DOWNLOAD__TIMEOUT_SEC", "42")
    monkeypatch.setenv("PACM_LOGGING__LEVEL", "debug")

    settings = load_settings()

    assert settings.install_dir == tmp_path / "plugins"
    assert settings.download.timeout_sec == 42
    assert settings.logging.level == "DEBUG"


@pytest.mark.parametrize(
    "overrides",
    [
        {"max_workers": 0},
        {"download": {"chunk_size": 10}},
        {"logging": {"level": "chatty"}},
    ],
)
def test_invalid_values_raise_config_error(overrides, tmp_path: Path) -> None:
    """Out-of-range values surface as ConfigError."""
    with pytest.raises(ConfigError, match="Invalid installer settings"):
        load_settings(data_dir=tmp_path, **overrides)
