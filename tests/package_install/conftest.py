# === NAVMAP v1 ===
# {
#   "module": "tests.package_install.conftest",
#   "purpose": "Shared fixtures for the package_install test suite",
#   "sections": [
#     {"id": "environment", "name": "Environment", "anchor": "environment", "kind": "section"},
#     {"id": "records", "name": "Records", "anchor": "records", "kind": "section"},
#     {"id": "components", "name": "Components", "anchor": "components", "kind": "section"}
#   ]
# }
# === /NAVMAP ===

"""Shared fixtures for the package_install test suite."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Iterator, Optional

import pytest

from Pacm.PackageInstall.manager import PackageManager
from Pacm.PackageInstall.packages import LocalPackage, RemotePackage
from Pacm.PackageInstall.settings import InstallSettings, load_settings, reset_settings
from Pacm.PackageInstall.task import InstallOptions, InstallTask
from Pacm.PackageInstall.testing import (
    FakeTransport,
    InlineExecutor,
    build_remote_package,
    make_zip_bytes,
)

PLUGIN_FILES = {
    "plugin.json": '{"id": "demo-plugin"}',
    "lib/module.py": "VALUE = 1\n",
    "assets/icon.txt": "icon",
}


# --- Environment ---


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path: Path) -> Iterator[None]:
    """Keep every test away from the real user data directory and PACM_ variables."""

    for key in [key for key in os.environ if key.upper().startswith("PACM_")]:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("PACM_DATA_DIR", str(tmp_path / "pacm-data"))
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings(tmp_path: Path) -> InstallSettings:
    """Settings rooted in a per-test data directory."""
    return load_settings(data_dir=tmp_path / "data")


# --- Records ---


@pytest.fixture
def plugin_zip() -> bytes:
    return make_zip_bytes(PLUGIN_FILES)


@pytest.fixture
def remote(plugin_zip: bytes) -> RemotePackage:
    """Two published versions whose assets match ``plugin_zip``."""
    return build_remote_package("demo-plugin", ("1.0.0", "1.1.0"), payload=plugin_zip)


@pytest.fixture
def local(remote: RemotePackage) -> LocalPackage:
    return LocalPackage.from_remote(remote)


# --- Components ---


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def executor() -> InlineExecutor:
    return InlineExecutor()


@pytest.fixture
def make_task(local, remote, transport, executor, settings) -> Callable[..., InstallTask]:
    """Factory building standalone tasks wired to the fake transport and inline executor."""

    def _make(options: Optional[InstallOptions] = None, **overrides) -> InstallTask:
        return InstallTask(
            overrides.get("manager"),
            overrides.get("local", local),
            overrides.get("remote", remote),
            options,
            transport=overrides.get("transport", transport),
            executor=overrides.get("executor", executor),
            settings=settings,
        )

    return _make


@pytest.fixture
def manager(settings, transport, executor, remote) -> Iterator[PackageManager]:
    """Manager wired to the fake transport and inline executor, with ``remote`` registered."""
    with PackageManager(settings=settings, transport=transport, executor=executor) as instance:
        instance.add_remote_package(remote)
        yield instance
