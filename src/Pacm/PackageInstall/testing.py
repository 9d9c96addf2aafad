"""Deterministic doubles for exercising install tasks without a network.

:class:`FakeTransport` records every transfer it is asked to open and lets the
caller drive it: report progress, finish it with a payload, fail it with an
HTTP status or a transport error. Aborting a fake transfer reports an aborted
outcome, exactly like the real transport. :class:`InlineExecutor` runs phases
on the submitting thread so that a whole install can complete inside one call.
:class:`BlockingCall` parks a phase function on its worker thread so a test can
act while that phase is in flight.
"""

from __future__ import annotations

import concurrent.futures
import hashlib
import io
import threading
import zipfile
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

from .download import DownloadConnection, DownloadRequest, TransferOutcome
from .errors import DownloadError
from .packages import Asset, RemotePackage

__all__ = [
    "BlockingCall",
    "FakeTransfer",
    "FakeTransport",
    "InlineExecutor",
    "build_remote_package",
    "make_zip_archive",
    "make_zip_bytes",
]

FileContents = Union[str, bytes]


class FakeTransfer:
    """One transfer opened on a :class:`FakeTransport`."""

    def __init__(
        self,
        request: DownloadRequest,
        on_progress: Callable[[int, Optional[int]], None],
        on_complete: Callable[[TransferOutcome], None],
    ) -> None:
        self.request = request
        self._on_progress = on_progress
        self._on_complete = on_complete
        self._lock = threading.Lock()
        self._finished = False
        self.outcome: Optional[TransferOutcome] = None
        self.future: concurrent.futures.Future = concurrent.futures.Future()
        self.future.add_done_callback(self._on_future_done)
        self.connection = DownloadConnection(self.future)

    @property
    def finished(self) -> bool:
        with self._lock:
            return self._finished

    @property
    def aborted(self) -> bool:
        return self.future.cancelled()

    def progress(self, received: int, total: Optional[int]) -> None:
        if not self.finished:
            self._on_progress(received, total)

    def succeed(self, payload: bytes = b"", status_code: int = 200) -> None:
        """Write ``payload`` to the staging path and report success."""

        if self.finished:
            return
        self.request.destination.parent.mkdir(parents=True, exist_ok=True)
        self.request.destination.write_bytes(payload)
        self._finish(
            TransferOutcome(
                path=self.request.destination,
                status_code=status_code,
                bytes_received=len(payload),
            )
        )

    def fail_status(self, status_code: int) -> None:
        """Report an HTTP error response."""
        self._finish(
            TransferOutcome(
                path=self.request.destination,
                status_code=status_code,
                error=DownloadError(
                    f"HTTP {status_code} while downloading {self.request.url}",
                    status_code=status_code,
                    retryable=status_code >= 500,
                ),
            )
        )

    def fail_transport(self, message: str = "connection reset") -> None:
        """Report a transport-level error with no response."""
        self._finish(
            TransferOutcome(
                path=self.request.destination,
                error=DownloadError(message, retryable=True),
            )
        )

    def _on_future_done(self, future: concurrent.futures.Future) -> None:
        if future.cancelled():
            self._finish(TransferOutcome(path=self.request.destination, aborted=True))

    def _finish(self, outcome: TransferOutcome) -> None:
        with self._lock:
            if self._finished:
                return
            self._finished = True
            self.outcome = outcome
        if not self.future.done():
            try:
                self.future.set_result(outcome)
            except concurrent.futures.InvalidStateError:
                pass
        self._on_complete(outcome)


class FakeTransport:
    """Download transport double.

    Args:
        payloads: Optional ``url -> bytes`` map. When a URL is listed the
            transfer completes inside :meth:`open`, reporting ``chunks``
            evenly sized progress steps first.
        chunks: Number of progress reports emitted for automatic transfers.
    """

    def __init__(self, payloads: Optional[Mapping[str, bytes]] = None, chunks: int = 4) -> None:
        self.payloads: Dict[str, bytes] = dict(payloads or {})
        self.chunks = max(1, chunks)
        self.transfers: List[FakeTransfer] = []
        self._opened = threading.Condition()

    def open(
        self,
        request: DownloadRequest,
        *,
        on_progress: Callable[[int, Optional[int]], None],
        on_complete: Callable[[TransferOutcome], None],
    ) -> DownloadConnection:
        transfer = FakeTransfer(request, on_progress, on_complete)
        with self._opened:
            self.transfers.append(transfer)
            self._opened.notify_all()
        payload = self.payloads.get(request.url)
        if payload is not None:
            total = len(payload)
            for step in range(1, self.chunks + 1):
                transfer.progress((total * step) // self.chunks, total)
            transfer.succeed(payload)
        return transfer.connection

    @property
    def last(self) -> FakeTransfer:
        with self._opened:
            return self.transfers[-1]

    def wait_for_transfer(self, count: int = 1, timeout: float = 5.0) -> FakeTransfer:
        """Block until at least ``count`` transfers were opened and return the latest."""

        with self._opened:
            if not self._opened.wait_for(lambda: len(self.transfers) >= count, timeout):
                raise TimeoutError(f"expected {count} transfer(s), saw {len(self.transfers)}")
            return self.transfers[-1]


class BlockingCall:
    """Wrap ``func`` so each call waits for :attr:`release` before running it.

    Examples:
        >>> gate = BlockingCall(len)
        >>> gate.release.set()
        >>> gate("abc"), gate.calls
        (3, 1)
    """

    def __init__(self, func: Callable[..., object], timeout: float = 10.0) -> None:
        self.func = func
        self.timeout = timeout
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1
        self.entered.set()
        if not self.release.wait(self.timeout):
            raise TimeoutError("blocked call was never released")
        return self.func(*args, **kwargs)


class InlineExecutor(concurrent.futures.Executor):
    """Executor that runs submitted callables immediately on the caller's thread."""

    def __init__(self) -> None:
        self._shutdown = False
        self.submitted = 0

    def submit(self, fn, /, *args, **kwargs):  # type: ignore[override]
        if self._shutdown:
            raise RuntimeError("cannot schedule new futures after shutdown")
        self.submitted += 1
        future: concurrent.futures.Future = concurrent.futures.Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:  # pylint: disable=broad-except
            future.set_exception(exc)
        return future

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        self._shutdown = True


def make_zip_bytes(files: Mapping[str, FileContents]) -> bytes:
    """Build an uncompressed ZIP archive in memory."""

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_STORED) as archive:
        for name, contents in files.items():
            archive.writestr(name, contents.encode("utf-8") if isinstance(contents, str) else contents)
    return buffer.getvalue()


def make_zip_archive(path: Path, files: Mapping[str, FileContents]) -> Path:
    """Write an uncompressed ZIP archive containing ``files`` to ``path``."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(make_zip_bytes(files))
    return path


def build_remote_package(
    package_id: str = "demo-plugin",
    versions: Sequence[str] = ("1.0.0",),
    *,
    sdk_versions: Optional[Mapping[str, str]] = None,
    payload: Optional[bytes] = None,
    base_url: str = "https://packages.example.org",
    name: Optional[str] = None,
) -> RemotePackage:
    """Build a remote package with one ZIP asset per version.

    When ``payload`` is given every asset declares its size and SHA-256 digest.
    """

    sdk_versions = sdk_versions or {}
    digest = hashlib.sha256(payload).hexdigest() if payload is not None else None
    assets = []
    for version in versions:
        file_name = f"{package_id}-{version}.zip"
        assets.append(
            Asset(
                file_name=file_name,
                version=version,
                url=f"{base_url}/{package_id}/{version}/{file_name}",
                sdk_version=sdk_versions.get(version, ""),
                file_size=len(payload) if payload is not None else None,
                checksum=digest,
            )
        )
    return RemotePackage(
        id=package_id,
        name=name or package_id.replace("-", " ").title(),
        type="plugin",
        author="Example Author",
        assets=tuple(assets),
    )
