# === NAVMAP v1 ===
# {
#   "module": "Pacm.PackageInstall",
#   "purpose": "Public entry points for package installation: manager, tasks, events and errors",
#   "sections": [
#     {"id": "exports", "name": "Public Exports", "anchor": "EXP", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Package installation engine.

A :class:`PackageManager` turns remote package metadata into installed files by
running one :class:`InstallTask` per package. Each task downloads the selected
archive, extracts it, and moves the files into the installation directory,
reporting state changes, progress and a single completion event along the way.

Examples:
    >>> from Pacm.PackageInstall import InstallOptions, PackageManager
    >>> with PackageManager() as manager:  # doctest: +SKIP
    ...     manager.add_remote_package(catalog_entry)
    ...     task = manager.install_package("my-plugin", InstallOptions(version="1.2.0"))
    ...     task.wait(timeout=120)
"""

from __future__ import annotations

from .cancellation import CancellationToken
from .download import (
    DownloadAdapter,
    DownloadConnection,
    DownloadRequest,
    DownloadTransport,
    HttpxDownloadTransport,
    TransferOutcome,
)
from .errors import (
    CancelledByUser,
    ConfigError,
    DownloadError,
    ExtractError,
    FinalizeError,
    IllegalTransitionError,
    PackageInstallError,
    ValidationError,
)
from .events import CompleteEvent, EventChannel, ProgressEvent, StateChangeEvent, Subscription
from .logging_config import setup_logging
from .manager import PackageManager
from .monitor import InstallMonitor
from .packages import Asset, LocalPackage, RemotePackage
from .settings import InstallSettings, get_settings, load_settings, reset_settings
from .state import InstallationState, can_transition, parse_state, transition
from .task import InstallOptions, InstallTask

__all__ = [
    "Asset",
    "CancellationToken",
    "CancelledByUser",
    "CompleteEvent",
    "ConfigError",
    "DownloadAdapter",
    "DownloadConnection",
    "DownloadError",
    "DownloadRequest",
    "DownloadTransport",
    "EventChannel",
    "ExtractError",
    "FinalizeError",
    "HttpxDownloadTransport",
    "IllegalTransitionError",
    "InstallMonitor",
    "InstallOptions",
    "InstallSettings",
    "InstallTask",
    "InstallationState",
    "LocalPackage",
    "PackageInstallError",
    "PackageManager",
    "ProgressEvent",
    "RemotePackage",
    "StateChangeEvent",
    "Subscription",
    "TransferOutcome",
    "ValidationError",
    "can_transition",
    "get_settings",
    "load_settings",
    "parse_state",
    "reset_settings",
    "setup_logging",
    "transition",
]
