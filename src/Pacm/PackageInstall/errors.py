# === NAVMAP v1 ===
# {
#   "module": "Pacm.PackageInstall.errors",
#   "purpose": "Define the exception hierarchy used across package validation, download, extraction, and finalization",
#   "sections": [
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "phases", "name": "Phase Errors", "anchor": "PHA", "kind": "api"},
#     {"id": "outcome", "name": "Outcome Markers", "anchor": "OUT", "kind": "api"},
#     {"id": "fatal", "name": "Programming Errors", "anchor": "FAT", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Exception hierarchy shared across package validation and installation phases.

An installation spans option validation, an HTTP transfer, archive extraction,
and the final move into the installation directory. Each phase owns one
exception type so callers (and the task driver) can tell where a failure
happened without parsing messages. Driver bugs such as an illegal state
transition are deliberately *not* part of this hierarchy: they derive from
:class:`AssertionError` and are never stored on a task.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "PackageInstallError",
    "ConfigError",
    "ValidationError",
    "DownloadError",
    "ExtractError",
    "FinalizeError",
    "CancelledByUser",
    "IllegalTransitionError",
]


class PackageInstallError(RuntimeError):
    """Base exception for package installation failures."""


class ConfigError(PackageInstallError):
    """Raised when installer settings or environment overrides are invalid."""


class ValidationError(PackageInstallError):
    """Raised synchronously when a task cannot be started.

    Typical causes are an unknown package, a pinned version that the remote
    package does not publish, or an SDK version with no compatible asset.
    """


class DownloadError(PackageInstallError):
    """Raised when the package archive cannot be retrieved or verified."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class ExtractError(PackageInstallError):
    """Raised when a staged archive is corrupt, unsafe, or cannot be unpacked."""


class FinalizeError(PackageInstallError):
    """Raised when extracted files cannot be moved into the installation directory."""


class CancelledByUser(PackageInstallError):
    """Raised inside a phase when the cancellation token is observed.

    This is an outcome marker rather than a failure: the driver converts it into
    the ``Cancelled`` terminal state and never records it as the task error.
    """


class IllegalTransitionError(AssertionError):
    """Raised when the driver requests a transition outside the state table."""

    def __init__(self, current: object, requested: object) -> None:
        super().__init__(f"illegal installation state transition: {current} -> {requested}")
        self.current = current
        self.requested = requested
