# === NAVMAP v1 ===
# {
#   "module": "Pacm.PackageInstall.task",
#   "purpose": "Install task driver: download, extract and finalize phases with cancellation and one-shot completion",
#   "sections": [
#     {"id": "options", "name": "InstallOptions", "anchor": "OPT", "kind": "api"},
#     {"id": "task", "name": "InstallTask", "anchor": "TSK", "kind": "api"},
#     {"id": "phases", "name": "Phase Bodies", "anchor": "PHA", "kind": "api"},
#     {"id": "transitions", "name": "Transitions & Notification", "anchor": "TRN", "kind": "helpers"},
#     {"id": "resources", "name": "Staging Resources", "anchor": "RES", "kind": "helpers"}
#   ]
# }
# === /NAVMAP ===

"""Install task driver.

An :class:`InstallTask` moves one package through
``None -> Downloading -> Extracting -> Finalizing -> Installed``. The download
runs on the manager's event loop through a :class:`DownloadTransport`;
extraction and finalization run on a worker executor. Any phase may end in
``Failed``; :meth:`InstallTask.cancel` ends the task in ``Cancelled`` from any
non-terminal state.

Concurrency model:

- ``state``, ``progress``, ``error``, the connection handle and the completion
  flag are guarded by one re-entrant lock. Transitions and their notifications
  happen under it; network transfer, extraction and file moves never do.
- Cancellation is cooperative. ``cancel()`` sets the token, aborts an in-flight
  transfer and enters ``Cancelled`` immediately; a blocking phase stops at its
  next checkpoint and then returns without touching the state.
- A handler that calls ``cancel()`` while it is being notified is honoured
  once the current notification finishes, so transitions never nest.
- Handlers run on the transitioning thread while it holds the task lock, the
  completion event included. They may query or cancel the task but must not
  block on it, so calling :meth:`InstallTask.wait` from a handler deadlocks.
- Completion is emitted exactly once, after the terminal transition. Staging
  and intermediate directories are removed once the task is complete *and*
  no phase is still running; only then is the manager told to reclaim the
  task, so a package never has two tasks with a phase in flight.
"""

from __future__ import annotations

import concurrent.futures
import functools
import logging
import shutil
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional, Type

from .cancellation import CancellationToken
from .download import (
    DownloadAdapter,
    DownloadConnection,
    DownloadRequest,
    DownloadTransport,
    sanitize_filename,
)
from .errors import (
    CancelledByUser,
    DownloadError,
    ExtractError,
    FinalizeError,
    IllegalTransitionError,
    PackageInstallError,
    ValidationError,
)
from .events import CompleteEvent, EventChannel, ProgressEvent, StateChangeEvent, Subscription
from .extract import extract_archive, is_supported_archive
from .finalize import finalize_install
from .packages import Asset, LocalPackage, RemotePackage
from .progress import ProgressTracker
from .settings import InstallSettings, get_settings
from .state import InstallationState, transition

if TYPE_CHECKING:  # pragma: no cover - import cycle guard for type checkers only
    from .manager import PackageManager

logger = logging.getLogger(__name__)

__all__ = ["InstallOptions", "InstallTask"]


@dataclass(frozen=True)
class InstallOptions:
    """Options captured when a task is created.

    Attributes:
        version: Install exactly this package version.
        sdk_version: Install the latest package version built for this SDK version.
        install_dir: Install here instead of the manager's default directory.

    Empty strings mean "unset"; ``version`` wins over ``sdk_version``.
    """

    version: str = ""
    sdk_version: str = ""
    install_dir: str = ""

    def well_formed(self) -> bool:
        if not all(isinstance(value, str) for value in (self.version, self.sdk_version, self.install_dir)):
            return False
        if self.install_dir:
            target = Path(self.install_dir).expanduser()
            if target.exists() and not target.is_dir():
                return False
        return True


class InstallTask:
    """Download, extract and install one package.

    Args:
        manager: Owning manager; told when the task completes and asked for the
            default installation directory. ``None`` for standalone use.
        local: Local record updated as the task progresses.
        remote: Remote record the asset is selected from.
        options: Version pin, SDK selection and install directory override.
        transport: Network client used for the download phase.
        executor: Worker pool that runs the blocking extract and finalize phases.
        settings: Installer settings; defaults to :func:`get_settings`.

    Examples:
        >>> task = manager.create_install_task("my-plugin")  # doctest: +SKIP
        >>> task.subscribe_complete(lambda event: print(event.state))  # doctest: +SKIP
        >>> task.start()  # doctest: +SKIP
    """

    def __init__(
        self,
        manager: Optional["PackageManager"],
        local: LocalPackage,
        remote: RemotePackage,
        options: Optional[InstallOptions] = None,
        *,
        transport: DownloadTransport,
        executor: concurrent.futures.Executor,
        settings: Optional[InstallSettings] = None,
    ) -> None:
        self._manager = manager
        self._local = local
        self._remote = remote
        self._options = options or InstallOptions()
        self._transport = transport
        self._executor = executor
        self._settings = settings or get_settings()

        self._lock = threading.RLock()
        self._events = EventChannel(self._lock)
        self._token = CancellationToken()
        self._state = InstallationState.NONE
        self._error: Optional[PackageInstallError] = None
        self._progress = ProgressTracker()
        self._asset: Optional[Asset] = None
        self._install_dir: Optional[Path] = None
        self._connection: Optional[DownloadConnection] = None
        self._archive_path: Optional[Path] = None
        self._staging_dir: Optional[Path] = None
        self._intermediate_dir: Optional[Path] = None
        self._prior_local_state: Optional[str] = None

        self._complete = False
        self._busy = 0
        self._released = False
        self._notifying = False
        self._deferred_cancel = False
        self._settled = threading.Event()

    def __repr__(self) -> str:
        return f"<InstallTask package={self.package_id!r} state={self.state.value} progress={self.progress()}>"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Select the asset and begin downloading it.

        Returns as soon as the transfer has been scheduled.

        Raises:
            ValidationError: If the records or options are invalid or no asset
                matches the options. The task stays in ``None``.
            IllegalTransitionError: If the task was already started, cancelled
                or failed.
        """

        with self._lock:
            if self._state is not InstallationState.NONE:
                raise IllegalTransitionError(self._state, InstallationState.DOWNLOADING)
            if not self.valid():
                raise ValidationError(f"Install task for package {self.package_id!r} is not valid")
            asset = self.get_remote_asset()
            if not is_supported_archive(asset.file_name):
                raise ValidationError(
                    f"Asset {asset.file_name!r} of package {self.package_id!r} is not a supported archive"
                )
            self._asset = asset
            self._install_dir = self._resolve_install_dir()
            self._prior_local_state = self._local.state
            self._local.set_state("Installing")
            self._local.clear_errors()
            logger.info(
                "starting package install",
                extra={"stage": "start", "package_id": self.package_id, "url": asset.url},
            )
            self._advance(InstallationState.DOWNLOADING)
        self.do_download()
        self._complete_if_terminal()

    def cancel(self) -> None:
        """Cancel the task; a no-op once the task is complete."""

        with self._lock:
            connection = self._cancel_locked()
        if connection is not None:
            connection.abort()
        self._complete_if_terminal()

    def get_remote_asset(self) -> Asset:
        """Select the asset to install according to the task options.

        Raises:
            ValidationError: If no asset satisfies the options.
        """

        options = self._options
        if options.version:
            asset = self._remote.asset_version(options.version)
            reason = f"version {options.version!r}"
        elif options.sdk_version:
            asset = self._remote.latest_sdk_asset(options.sdk_version)
            reason = f"SDK version {options.sdk_version!r}"
        else:
            asset = self._remote.latest_asset()
            reason = "any version"
        if asset is None or not asset.valid():
            raise ValidationError(f"Package {self._remote.id!r} has no installable asset for {reason}")
        return asset

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the task is complete and its phases have wound down.

        Returns:
            ``True`` if the task settled within ``timeout``.
        """
        return self._settled.wait(timeout)

    def subscribe_state(self, handler: Callable[[StateChangeEvent], None]) -> Subscription:
        return self._events.subscribe_state(handler)

    def subscribe_progress(self, handler: Callable[[ProgressEvent], None]) -> Subscription:
        return self._events.subscribe_progress(handler)

    def subscribe_complete(self, handler: Callable[[CompleteEvent], None]) -> Subscription:
        return self._events.subscribe_complete(handler)

    # Queries ----------------------------------------------------------

    @property
    def package_id(self) -> str:
        return self._local.id

    @property
    def local(self) -> LocalPackage:
        return self._local

    @property
    def remote(self) -> RemotePackage:
        return self._remote

    @property
    def options(self) -> InstallOptions:
        return self._options

    @property
    def transport(self) -> DownloadTransport:
        """Network client the download phase runs on."""
        return self._transport

    @property
    def executor(self) -> concurrent.futures.Executor:
        """Worker pool running the extract and finalize phases."""
        return self._executor

    @property
    def asset(self) -> Optional[Asset]:
        with self._lock:
            return self._asset

    @property
    def install_dir(self) -> Optional[Path]:
        with self._lock:
            return self._install_dir

    @property
    def state(self) -> InstallationState:
        with self._lock:
            return self._state

    @property
    def error(self) -> Optional[PackageInstallError]:
        with self._lock:
            return self._error

    def valid(self) -> bool:
        return (
            self._local.valid()
            and self._remote.valid()
            and self._local.id == self._remote.id
            and self._options.well_formed()
        )

    def cancelled(self) -> bool:
        with self._lock:
            return self._state is InstallationState.CANCELLED

    def failed(self) -> bool:
        with self._lock:
            return self._state is InstallationState.FAILED

    def success(self) -> bool:
        with self._lock:
            return self._state is InstallationState.INSTALLED

    def complete(self) -> bool:
        with self._lock:
            return self._state.terminal

    def progress(self) -> int:
        with self._lock:
            return self._progress.value

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def do_download(self) -> None:
        """Start retrieving the selected asset into a task-owned staging directory."""

        with self._lock:
            if self._state is not InstallationState.DOWNLOADING or self._token.is_cancelled():
                return
            asset = self._asset
            assert asset is not None
            staging = self._allocate_dir(Path(self._settings.staging_dir))
            self._staging_dir = staging
            self._busy += 1

        archive = staging / sanitize_filename(asset.file_name)
        adapter = DownloadAdapter(
            asset,
            self._token,
            on_progress=self._on_download_progress,
            on_success=self._on_download_success,
            on_failure=self._fail,
            on_finished=self._on_download_finished,
            verify=self._settings.download.verify_checksums,
        )
        try:
            staging.mkdir(parents=True, exist_ok=True)
            connection = self._transport.open(
                DownloadRequest(url=asset.url, destination=archive),
                on_progress=adapter.handle_progress,
                on_complete=adapter.handle_complete,
            )
        except Exception as exc:  # pylint: disable=broad-except
            self._exit_phase()
            self._fail(DownloadError(f"Could not start download of {asset.url}: {exc}"))
            return

        with self._lock:
            if self._state is InstallationState.DOWNLOADING:
                self._connection = connection
                return
            abort = self._state is InstallationState.CANCELLED
        if abort:
            connection.abort()

    def do_extract(self) -> None:
        """Unpack the staged archive into a task-owned intermediate directory."""

        with self._lock:
            if self._state is not InstallationState.EXTRACTING:
                return
            archive = self._archive_path
            assert archive is not None
            intermediate = self._allocate_dir(Path(self._settings.intermediate_dir))
            self._intermediate_dir = intermediate

        try:
            self._token.raise_if_cancelled("extract")
            extract_archive(
                archive,
                intermediate,
                token=self._token,
                on_progress=functools.partial(self._on_phase_progress, InstallationState.EXTRACTING),
            )
            self._token.raise_if_cancelled("extract")
        except CancelledByUser:
            logger.info(
                "extraction stopped after cancellation",
                extra={"stage": "extract", "package_id": self.package_id},
            )
            return
        except ExtractError as exc:
            self._fail(exc)
            return
        except Exception as exc:  # pylint: disable=broad-except
            self._fail(ExtractError(f"Unexpected error extracting {archive}: {exc}"))
            return

        with self._lock:
            if self._state is not InstallationState.EXTRACTING:
                return
            if not self._advance(InstallationState.FINALIZING):
                return
            self._busy += 1
        self._schedule(self.do_finalize, FinalizeError)

    def do_finalize(self) -> None:
        """Move extracted files into the installation directory and update the local record."""

        with self._lock:
            if self._state is not InstallationState.FINALIZING:
                return
            source = self._intermediate_dir
            destination = self._install_dir
            assert source is not None and destination is not None

        self._local.clear_manifest()
        try:
            self._token.raise_if_cancelled("finalize")
            finalize_install(
                source,
                destination,
                token=self._token,
                on_file=self._local.add_manifest_file,
                on_progress=functools.partial(self._on_phase_progress, InstallationState.FINALIZING),
            )
        except CancelledByUser:
            logger.info(
                "finalize stopped after cancellation",
                extra={"stage": "finalize", "package_id": self.package_id},
            )
            return
        except FinalizeError as exc:
            self._fail(exc)
            return
        except Exception as exc:  # pylint: disable=broad-except
            self._fail(FinalizeError(f"Unexpected error installing into {destination}: {exc}"))
            return

        with self._lock:
            if self._state is not InstallationState.FINALIZING:
                return
            assert self._asset is not None
            self._local.set_installed_asset(self._asset)
            self._local.set_install_dir(destination)
            self._set_progress(InstallationState.FINALIZING, 100)
            self._advance(InstallationState.INSTALLED)

    def set_complete(self) -> None:
        """Emit the completion event and release the task once its phases are idle.

        Only the first call after a terminal state has been entered has any
        effect.
        """

        with self._lock:
            if self._complete:
                return
            if not self._state.terminal:
                raise IllegalTransitionError(self._state, "complete")
            self._complete = True
            state, error = self._state, self._error
            self._update_local_record(state, error)
            self._notify(
                self._events.emit_complete,
                CompleteEvent(package_id=self.package_id, state=state, error=error),
            )
            release = self._busy == 0

        log = logger.error if state is InstallationState.FAILED else logger.info
        log(
            "install task complete",
            extra={
                "stage": "complete",
                "package_id": self.package_id,
                "state": state.value,
                "error": str(error) if error else None,
            },
        )
        if release:
            self._release_resources()

    # ------------------------------------------------------------------
    # Phase callbacks
    # ------------------------------------------------------------------

    def _on_download_progress(self, percent: int) -> None:
        with self._lock:
            self._set_progress(InstallationState.DOWNLOADING, percent)
        self._complete_if_terminal()

    def _on_download_success(self, archive: Path) -> None:
        with self._lock:
            if self._state is not InstallationState.DOWNLOADING or self._token.is_cancelled():
                return
            self._archive_path = archive
            self._connection = None
            logger.info(
                "download complete",
                extra={"stage": "download", "package_id": self.package_id, "path": archive},
            )
            if not self._advance(InstallationState.EXTRACTING):
                return
            self._busy += 1
        self._schedule(self.do_extract, ExtractError)

    def _on_download_finished(self) -> None:
        self._exit_phase()
        self._complete_if_terminal()

    def _on_phase_progress(self, state: InstallationState, percent: int) -> None:
        with self._lock:
            self._set_progress(state, percent)

    def _schedule(self, phase: Callable[[], None], error_type: Type[PackageInstallError]) -> None:
        try:
            self._executor.submit(self._run_phase, phase)
        except RuntimeError as exc:
            self._exit_phase()
            self._fail(error_type(f"Could not schedule {phase.__name__} for {self.package_id!r}: {exc}"))

    def _run_phase(self, phase: Callable[[], None]) -> None:
        try:
            phase()
        finally:
            self._exit_phase()
            self._complete_if_terminal()

    # ------------------------------------------------------------------
    # Transitions and notification (callers hold the lock)
    # ------------------------------------------------------------------

    def _advance(self, new: InstallationState) -> bool:
        old = self._state
        self._state = transition(old, new)
        if new in (InstallationState.EXTRACTING, InstallationState.FINALIZING):
            self._progress.reset()
        self._local.set_install_state(new.value)
        logger.debug(
            "install state changed",
            extra={"stage": "state", "package_id": self.package_id, "state": new.value},
        )
        self._notify(
            self._events.emit_state,
            StateChangeEvent(package_id=self.package_id, old=old, new=new),
        )
        return self._state is new

    def _set_progress(self, state: InstallationState, value: int) -> None:
        if self._state is not state or self._token.is_cancelled():
            return
        if self._progress.update(value):
            self._notify(
                self._events.emit_progress,
                ProgressEvent(package_id=self.package_id, state=state, progress=self._progress.value),
            )

    def _notify(self, emit: Callable, event: object) -> None:
        self._notifying = True
        try:
            emit(event)
        finally:
            self._notifying = False
        if self._deferred_cancel:
            self._deferred_cancel = False
            connection = self._cancel_locked()
            if connection is not None:
                connection.abort()

    def _cancel_locked(self) -> Optional[DownloadConnection]:
        if self._state.terminal:
            return None
        self._token.cancel()
        if self._notifying:
            self._deferred_cancel = True
            return None
        logger.info(
            "cancelling package install",
            extra={"stage": "cancel", "package_id": self.package_id, "state": self._state.value},
        )
        connection, self._connection = self._connection, None
        self._advance(InstallationState.CANCELLED)
        return connection

    def _fail(self, error: PackageInstallError) -> None:
        with self._lock:
            if self._state.terminal:
                return
            logger.error(
                "package install failed",
                extra={
                    "stage": self._state.value.lower(),
                    "package_id": self.package_id,
                    "error": str(error),
                },
            )
            self._error = error
            self._local.add_error(str(error))
            connection, self._connection = self._connection, None
            self._advance(InstallationState.FAILED)
        if connection is not None:
            connection.abort()
        self._complete_if_terminal()

    def _complete_if_terminal(self) -> None:
        with self._lock:
            terminal = self._state.terminal and not self._complete
        if terminal:
            self.set_complete()

    def _update_local_record(self, state: InstallationState, error: Optional[PackageInstallError]) -> None:
        if state is InstallationState.INSTALLED:
            self._local.set_state("Installed")
        elif state is InstallationState.FAILED:
            self._local.set_state("Failed")
        elif self._prior_local_state is not None:
            self._local.set_state(self._prior_local_state)

    # ------------------------------------------------------------------
    # Staging resources
    # ------------------------------------------------------------------

    def _resolve_install_dir(self) -> Path:
        if self._options.install_dir:
            return Path(self._options.install_dir).expanduser()
        if self._manager is not None:
            return self._manager.default_install_dir(self._local)
        return Path(self._settings.install_dir) / sanitize_filename(self._local.id)

    def _allocate_dir(self, root: Path) -> Path:
        return root / f"{sanitize_filename(self.package_id)}-{uuid.uuid4().hex[:12]}"

    def _exit_phase(self) -> None:
        with self._lock:
            self._busy -= 1
            release = self._complete and self._busy == 0
        if release:
            self._release_resources()

    def _release_resources(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
            paths = [path for path in (self._staging_dir, self._intermediate_dir) if path is not None]
        for path in paths:
            try:
                shutil.rmtree(path)
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning(
                    "failed to remove task directory",
                    extra={"stage": "cleanup", "package_id": self.package_id, "path": path, "error": str(exc)},
                )
        if self._manager is not None:
            self._manager.on_task_complete(self)
        self._settled.set()
