# === NAVMAP v1 ===
# {
#   "module": "Pacm.PackageInstall.manager",
#   "purpose": "Package registry owning records, the download event loop, the worker pool and active install tasks",
#   "sections": [
#     {"id": "records", "name": "Package Records", "anchor": "REC", "kind": "api"},
#     {"id": "tasks", "name": "Task Lifecycle", "anchor": "TSK", "kind": "api"},
#     {"id": "shutdown", "name": "Shutdown", "anchor": "SHD", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Package manager that owns records and install tasks.

The manager keeps :class:`RemotePackage` and :class:`LocalPackage` records
alive for as long as any task references them, hands every task the shared
download transport and worker executor, and drops tasks from its active set
when they report completion.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Optional, Union

from .download import DownloadTransport, HttpxDownloadTransport, sanitize_filename
from .errors import ValidationError
from .eventloop import EventLoopThread
from .packages import LocalPackage, RemotePackage
from .settings import InstallSettings, get_settings
from .task import InstallOptions, InstallTask

if TYPE_CHECKING:  # pragma: no cover
    from .monitor import InstallMonitor

logger = logging.getLogger(__name__)

__all__ = ["PackageManager"]


class PackageManager:
    """Registry of package records and the install tasks acting on them.

    Args:
        settings: Installer settings; defaults to :func:`get_settings`.
        transport: Download transport; defaults to an
            :class:`HttpxDownloadTransport` on the manager's event loop.
        executor: Worker pool for extract and finalize; defaults to a
            ``ThreadPoolExecutor`` sized by ``settings.max_workers``.
        loop: Event loop thread for downloads; created on demand.

    Components the manager creates itself are shut down by :meth:`shutdown`;
    injected ones are left to their owner.
    """

    def __init__(
        self,
        settings: Optional[InstallSettings] = None,
        transport: Optional[DownloadTransport] = None,
        executor: Optional[concurrent.futures.Executor] = None,
        loop: Optional[EventLoopThread] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._lock = threading.RLock()
        self._remote: Dict[str, RemotePackage] = {}
        self._local: Dict[str, LocalPackage] = {}
        self._tasks: Dict[str, InstallTask] = {}
        self._closed = False

        self._owns_loop = loop is None and transport is None
        self._loop = loop or (EventLoopThread() if transport is None else None)
        if transport is None:
            assert self._loop is not None
            transport = HttpxDownloadTransport(self._loop, self._settings.download)
        self._transport = transport

        self._owns_executor = executor is None
        self._executor = executor or concurrent.futures.ThreadPoolExecutor(
            max_workers=self._settings.max_workers,
            thread_name_prefix="pacm-install",
        )

    def __enter__(self) -> "PackageManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    @property
    def settings(self) -> InstallSettings:
        return self._settings

    @property
    def loop(self) -> Optional[EventLoopThread]:
        """Event loop thread running downloads; ``None`` when the transport brings its own."""
        return self._loop

    @property
    def transport(self) -> DownloadTransport:
        return self._transport

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def add_remote_package(self, package: Union[RemotePackage, Mapping[str, object]]) -> RemotePackage:
        """Register (or replace) catalog metadata for one package."""

        remote = package if isinstance(package, RemotePackage) else RemotePackage.from_dict(package)
        if not remote.valid():
            raise ValidationError(f"Remote package record is incomplete: {remote!r}")
        with self._lock:
            self._remote[remote.id] = remote
        return remote

    def remote_package(self, package_id: str) -> Optional[RemotePackage]:
        with self._lock:
            return self._remote.get(package_id)

    def local_package(self, package_id: str) -> Optional[LocalPackage]:
        with self._lock:
            return self._local.get(package_id)

    def local_packages(self) -> List[LocalPackage]:
        with self._lock:
            return list(self._local.values())

    def default_install_dir(self, local: LocalPackage) -> Path:
        return Path(self._settings.install_dir) / sanitize_filename(local.id)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_install_task(
        self, package_id: str, options: Optional[InstallOptions] = None
    ) -> InstallTask:
        """Build an install task for ``package_id`` without starting it.

        Raises:
            ValidationError: If the package is unknown, the manager is shut
                down, or an earlier task for the package has not settled yet.
        """

        with self._lock:
            if self._closed:
                raise ValidationError("Package manager has been shut down")
            remote = self._remote.get(package_id)
            if remote is None:
                raise ValidationError(f"Unknown package: {package_id!r}")
            if package_id in self._tasks:
                raise ValidationError(f"Package {package_id!r} is already being installed")
            local = self._local.get(package_id)
            if local is None:
                local = LocalPackage.from_remote(remote)
                self._local[package_id] = local
            task = InstallTask(
                self,
                local,
                remote,
                options,
                transport=self._transport,
                executor=self._executor,
                settings=self._settings,
            )
            self._tasks[package_id] = task
        logger.debug("install task created", extra={"stage": "manager", "package_id": package_id})
        return task

    def install_package(
        self, package_id: str, options: Optional[InstallOptions] = None
    ) -> InstallTask:
        """Create and start an install task.

        A task whose ``start()`` raises is discarded before the error propagates.
        """

        task = self.create_install_task(package_id, options)
        try:
            task.start()
        except Exception:
            self._discard(task)
            raise
        return task

    def install_packages(
        self,
        package_ids: Iterable[str],
        options: Optional[InstallOptions] = None,
        monitor: Optional["InstallMonitor"] = None,
    ) -> List[InstallTask]:
        """Start one task per id, optionally tracking them with ``monitor``.

        Every task is created, and handed to ``monitor``, before the first one
        starts, so the monitor never sees a partial set complete. When a
        ``start()`` raises, that task and the ones not yet started are
        discarded before the error propagates; tasks already running continue.
        """

        tasks: List[InstallTask] = []
        try:
            for package_id in package_ids:
                tasks.append(self.create_install_task(package_id, options))
        except Exception:
            for task in tasks:
                self._discard(task)
            raise

        if monitor is not None:
            for task in tasks:
                monitor.add_task(task)
        for index, task in enumerate(tasks):
            try:
                task.start()
            except Exception:
                for pending in tasks[index:]:
                    self._discard(pending)
                    if monitor is not None:
                        monitor.remove_task(pending)
                raise
        return tasks

    def tasks(self) -> List[InstallTask]:
        with self._lock:
            return list(self._tasks.values())

    def task(self, package_id: str) -> Optional[InstallTask]:
        with self._lock:
            return self._tasks.get(package_id)

    def cancel_all(self) -> None:
        for task in self.tasks():
            task.cancel()

    def on_task_complete(self, task: InstallTask) -> None:
        """Forget a task once it has settled; its records stay registered."""

        self._discard(task)
        logger.debug(
            "install task reclaimed",
            extra={"stage": "manager", "package_id": task.package_id, "state": task.state.value},
        )

    def _discard(self, task: InstallTask) -> None:
        with self._lock:
            if self._tasks.get(task.package_id) is task:
                del self._tasks[task.package_id]

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def shutdown(self, wait: bool = True) -> None:
        """Cancel active tasks and stop the components the manager created."""

        with self._lock:
            if self._closed:
                return
            self._closed = True
            active = list(self._tasks.values())
        for task in active:
            task.cancel()
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
        if self._owns_loop and self._loop is not None:
            self._loop.stop()
        logger.debug("package manager shut down", extra={"stage": "manager"})
