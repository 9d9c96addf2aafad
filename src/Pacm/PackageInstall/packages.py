# === NAVMAP v1 ===
# {
#   "module": "Pacm.PackageInstall.packages",
#   "purpose": "Package records: remote assets, remote packages, and local installation records",
#   "sections": [
#     {"id": "versions", "name": "Version Ordering", "anchor": "VER", "kind": "helpers"},
#     {"id": "asset", "name": "Asset", "anchor": "AST", "kind": "api"},
#     {"id": "remote", "name": "RemotePackage", "anchor": "REM", "kind": "api"},
#     {"id": "local", "name": "LocalPackage", "anchor": "LOC", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Package records shared by the manager and install tasks.

The manager owns these records; install tasks hold plain references and rely on
the manager keeping them alive while a task is active. :class:`RemotePackage`
and :class:`Asset` are frozen snapshots of catalog metadata. :class:`LocalPackage`
is mutated by the finalize phase and the completion handler, so its mutators
take the record's own lock.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from packaging.version import InvalidVersion, Version

__all__ = [
    "Asset",
    "LocalPackage",
    "RemotePackage",
    "version_key",
]


def version_key(version: str) -> Tuple[int, Any]:
    """Sort key placing PEP 440 versions above free-form version strings."""

    try:
        return (1, Version(version))
    except InvalidVersion:
        return (0, version)


@dataclass(frozen=True)
class Asset:
    """Downloadable archive for one published package version.

    Attributes:
        file_name: Archive file name, used for the staging path and to pick
            the extractor.
        version: Package version the archive contains.
        url: Download location (first mirror).
        sdk_version: SDK/platform version the archive was built against.
        file_size: Expected archive size in bytes, if published.
        checksum: Expected hex digest, if published.
        checksum_algorithm: :mod:`hashlib` algorithm name for ``checksum``.
    """

    file_name: str
    version: str
    url: str
    sdk_version: str = ""
    file_size: Optional[int] = None
    checksum: Optional[str] = None
    checksum_algorithm: str = "sha256"

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Asset":
        mirrors = payload.get("mirrors") or []
        url = payload.get("url") or (mirrors[0].get("url") if mirrors else "")
        file_size = payload.get("file-size", payload.get("file_size"))
        return cls(
            file_name=str(payload.get("file-name", payload.get("file_name", ""))),
            version=str(payload.get("version", "")),
            url=str(url),
            sdk_version=str(payload.get("sdk-version", payload.get("sdk_version", "")) or ""),
            file_size=int(file_size) if file_size not in (None, "") else None,
            checksum=payload.get("checksum") or None,
            checksum_algorithm=str(payload.get("checksum-algorithm", "sha256")),
        )

    def valid(self) -> bool:
        return bool(self.file_name and self.version and self.url)


@dataclass(frozen=True)
class RemotePackage:
    """Package as published in the remote catalog."""

    id: str
    name: str
    type: str = ""
    author: str = ""
    description: str = ""
    assets: Tuple[Asset, ...] = ()

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RemotePackage":
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name", payload["id"])),
            type=str(payload.get("type", "")),
            author=str(payload.get("author", "")),
            description=str(payload.get("description", "")),
            assets=tuple(Asset.from_dict(item) for item in payload.get("assets", ())),
        )

    def valid(self) -> bool:
        return bool(self.id and self.name)

    def latest_asset(self) -> Optional[Asset]:
        """Return the asset with the highest version, or ``None`` when there are none."""
        if not self.assets:
            return None
        return max(self.assets, key=lambda asset: version_key(asset.version))

    def asset_version(self, version: str) -> Optional[Asset]:
        """Return the asset published for exactly ``version``."""
        for asset in self.assets:
            if asset.version == version:
                return asset
        return None

    def latest_sdk_asset(self, sdk_version: str) -> Optional[Asset]:
        """Return the highest-versioned asset built for ``sdk_version``."""
        candidates = [asset for asset in self.assets if asset.sdk_version == sdk_version]
        if not candidates:
            return None
        return max(candidates, key=lambda asset: version_key(asset.version))


@dataclass
class LocalPackage:
    """Local record of a package that is installed or being installed."""

    id: str
    name: str
    type: str = ""
    author: str = ""
    description: str = ""
    state: str = ""
    install_state: str = ""
    version: str = ""
    sdk_version: str = ""
    install_dir: Optional[Path] = None
    manifest: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @classmethod
    def from_remote(cls, remote: RemotePackage) -> "LocalPackage":
        return cls(
            id=remote.id,
            name=remote.name,
            type=remote.type,
            author=remote.author,
            description=remote.description,
        )

    def valid(self) -> bool:
        return bool(self.id and self.name)

    def is_installed(self) -> bool:
        with self._lock:
            return self.state == "Installed"

    def set_state(self, state: str) -> None:
        with self._lock:
            self.state = state

    def set_install_state(self, state: str) -> None:
        with self._lock:
            self.install_state = state

    def set_installed_asset(self, asset: Asset) -> None:
        with self._lock:
            self.version = asset.version
            self.sdk_version = asset.sdk_version

    def set_install_dir(self, path: Path) -> None:
        with self._lock:
            self.install_dir = path

    def add_manifest_file(self, relative_path: str) -> None:
        with self._lock:
            if relative_path not in self.manifest:
                self.manifest.append(relative_path)

    def clear_manifest(self) -> None:
        with self._lock:
            self.manifest.clear()

    def add_error(self, message: str) -> None:
        with self._lock:
            self.errors.append(message)

    def clear_errors(self) -> None:
        with self._lock:
            self.errors.clear()

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "id": self.id,
                "name": self.name,
                "type": self.type,
                "author": self.author,
                "description": self.description,
                "state": self.state,
                "install-state": self.install_state,
                "version": self.version,
                "sdk-version": self.sdk_version,
                "install-dir": str(self.install_dir) if self.install_dir else "",
                "manifest": list(self.manifest),
                "errors": list(self.errors),
            }
