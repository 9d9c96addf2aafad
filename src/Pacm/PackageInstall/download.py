# === NAVMAP v1 ===
# {
#   "module": "Pacm.PackageInstall.download",
#   "purpose": "Download transport contract, HTTPX streaming transport, archive verification, and the download phase adapter",
#   "sections": [
#     {"id": "contract", "name": "Transport Contract", "anchor": "CON", "kind": "api"},
#     {"id": "httpx", "name": "HttpxDownloadTransport", "anchor": "HTX", "kind": "api"},
#     {"id": "verify", "name": "Archive Verification", "anchor": "VER", "kind": "helpers"},
#     {"id": "adapter", "name": "DownloadAdapter", "anchor": "ADP", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""
Package Download Utilities

The download phase is split in two. A *transport* moves bytes from the asset URL
to a staging file on the event loop and reports ``(bytes_received, total_bytes)``
followed by exactly one terminal :class:`TransferOutcome`. The
:class:`DownloadAdapter` sits between the transport and the install task: it
turns byte counts into monotonic percentages, verifies the finished archive
against the asset metadata, and routes the outcome to the task.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import hashlib
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol

import httpx

from .cancellation import CancellationToken
from .errors import DownloadError
from .eventloop import EventLoopThread
from .packages import Asset
from .progress import percent_from_bytes
from .settings import DownloadConfiguration

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, Optional[int]], None]

__all__ = [
    "DownloadAdapter",
    "DownloadConnection",
    "DownloadRequest",
    "DownloadTransport",
    "HttpxDownloadTransport",
    "TransferOutcome",
    "compute_file_hash",
    "sanitize_filename",
    "verify_archive",
]


@dataclass(frozen=True)
class DownloadRequest:
    """What to fetch and where to put it."""

    url: str
    destination: Path
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TransferOutcome:
    """Terminal report of one transfer.

    Attributes:
        path: Staging file the transfer wrote to.
        status_code: HTTP status of the response, ``None`` if no response arrived.
        bytes_received: Bytes written to ``path``.
        error: Failure detail; ``None`` on success.
        aborted: ``True`` when the transfer stopped because of :meth:`DownloadConnection.abort`.
    """

    path: Path
    status_code: Optional[int] = None
    bytes_received: int = 0
    error: Optional[DownloadError] = None
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return (
            self.error is None
            and not self.aborted
            and self.status_code is not None
            and 200 <= self.status_code < 300
        )


class DownloadConnection:
    """Handle to one in-flight transfer."""

    def __init__(self, future: concurrent.futures.Future) -> None:
        self._future = future

    def abort(self) -> None:
        """Stop the transfer; the transport still reports an aborted outcome."""
        self._future.cancel()

    def done(self) -> bool:
        return self._future.done()


class DownloadTransport(Protocol):
    """Contract between the download phase and a network client.

    ``open`` must not block. It must call ``on_complete`` exactly once per
    call, including after :meth:`DownloadConnection.abort`, and must not call
    ``on_progress`` after ``on_complete``.
    """

    def open(
        self,
        request: DownloadRequest,
        *,
        on_progress: ProgressCallback,
        on_complete: Callable[[TransferOutcome], None],
    ) -> DownloadConnection:
        ...


def _content_length(response: httpx.Response) -> Optional[int]:
    header = response.headers.get("Content-Length")
    if not header:
        return None
    try:
        value = int(header)
    except ValueError:
        return None
    return value if value > 0 else None


class HttpxDownloadTransport:
    """Stream assets with :class:`httpx.AsyncClient` on an :class:`EventLoopThread`.

    Bytes are written to ``<destination>.part`` and renamed into place once the
    body has been fully received, so a partially written archive never carries
    the final staging name.

    Args:
        loop: Event loop thread that runs the transfers.
        config: Timeouts, chunk size and default headers.
        transport: Optional HTTPX transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        loop: EventLoopThread,
        config: Optional[DownloadConfiguration] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._loop = loop
        self._config = config or DownloadConfiguration()
        self._transport = transport

    def open(
        self,
        request: DownloadRequest,
        *,
        on_progress: ProgressCallback,
        on_complete: Callable[[TransferOutcome], None],
    ) -> DownloadConnection:
        future = self._loop.submit(self._transfer(request, on_progress, on_complete))
        return DownloadConnection(future)

    def _client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(self._config.timeout_sec, connect=self._config.connect_timeout_sec)
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=timeout,
            headers=self._config.headers,
            follow_redirects=self._config.follow_redirects,
        )

    async def _transfer(
        self,
        request: DownloadRequest,
        on_progress: ProgressCallback,
        on_complete: Callable[[TransferOutcome], None],
    ) -> None:
        destination = request.destination
        part_path = destination.with_name(destination.name + ".part")
        received = 0
        status_code: Optional[int] = None
        outcome: Optional[TransferOutcome] = None
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            async with self._client() as client:
                async with client.stream("GET", request.url, headers=request.headers) as response:
                    status_code = response.status_code
                    if response.is_error:
                        logger.error(
                            "download rejected by server",
                            extra={"stage": "download", "url": request.url, "status": status_code},
                        )
                        outcome = TransferOutcome(
                            path=destination,
                            status_code=status_code,
                            error=DownloadError(
                                f"HTTP {status_code} while downloading {request.url}",
                                status_code=status_code,
                                retryable=status_code >= 500,
                            ),
                        )
                        return
                    total = _content_length(response)
                    with part_path.open("wb") as handle:
                        async for chunk in response.aiter_bytes(self._config.chunk_size):
                            if not chunk:
                                continue
                            handle.write(chunk)
                            received += len(chunk)
                            on_progress(received, total)
            part_path.replace(destination)
            outcome = TransferOutcome(path=destination, status_code=status_code, bytes_received=received)
        except asyncio.CancelledError:
            outcome = TransferOutcome(
                path=destination, status_code=status_code, bytes_received=received, aborted=True
            )
            raise
        except httpx.HTTPError as exc:
            outcome = TransferOutcome(
                path=destination,
                status_code=status_code,
                bytes_received=received,
                error=DownloadError(
                    f"Transport error while downloading {request.url}: {exc}", retryable=True
                ),
            )
        except OSError as exc:
            outcome = TransferOutcome(
                path=destination,
                status_code=status_code,
                bytes_received=received,
                error=DownloadError(f"Failed to write download to {part_path}: {exc}"),
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("unexpected download failure", extra={"stage": "download", "url": request.url})
            outcome = TransferOutcome(
                path=destination,
                status_code=status_code,
                bytes_received=received,
                error=DownloadError(f"Download failed for {request.url}: {exc}"),
            )
        finally:
            if outcome is None or not outcome.ok:
                part_path.unlink(missing_ok=True)
            if outcome is not None:
                _report(on_complete, outcome)


def _report(on_complete: Callable[[TransferOutcome], None], outcome: TransferOutcome) -> None:
    try:
        on_complete(outcome)
    except Exception:  # pylint: disable=broad-except
        logger.exception("download completion handler failed", extra={"stage": "download"})


def sanitize_filename(filename: str) -> str:
    """Sanitize filenames to prevent directory traversal and unsafe characters.

    Examples:
        >>> sanitize_filename("../pkg v1.zip")
        'pkg_v1.zip'
    """

    safe = filename.replace(os.sep, "_").replace("/", "_").replace("\\", "_")
    safe = re.sub(r"[^A-Za-z0-9._-]", "_", safe)
    safe = safe.strip("._") or "package"
    if len(safe) > 255:
        safe = safe[:255]
    return safe


def compute_file_hash(path: Path, algorithm: str = "sha256") -> str:
    """Return the hex digest of ``path`` using the :mod:`hashlib` ``algorithm``."""

    hasher = hashlib.new(algorithm)
    with path.open("rb") as stream:
        for chunk in iter(lambda: stream.read(1 << 20), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def verify_archive(path: Path, asset: Asset) -> None:
    """Check a downloaded archive against the size and checksum published for ``asset``.

    Raises:
        DownloadError: If the file is missing, has the wrong size, or its digest
            does not match.
    """

    if not path.is_file():
        raise DownloadError(f"Downloaded archive missing: {path}")
    if asset.file_size is not None:
        actual_size = path.stat().st_size
        if actual_size != asset.file_size:
            raise DownloadError(
                f"Size mismatch for {asset.file_name}: expected {asset.file_size} bytes, got {actual_size}"
            )
    if asset.checksum:
        try:
            actual = compute_file_hash(path, asset.checksum_algorithm)
        except ValueError as exc:
            raise DownloadError(
                f"Unsupported checksum algorithm {asset.checksum_algorithm!r} for {asset.file_name}"
            ) from exc
        if actual.lower() != asset.checksum.lower():
            raise DownloadError(
                f"Checksum mismatch for {asset.file_name}: expected {asset.checksum}, got {actual}"
            )


class DownloadAdapter:
    """Translate transport callbacks into install-task progress and phase outcomes.

    Progress is ``floor(received * 100 / total)`` clamped to 100 and forwarded
    only when it increases. When the server omits ``Content-Length`` the
    asset's published ``file_size`` is used as the total; with neither, no
    percentages are reported. Once the cancellation token is set nothing more
    is forwarded, not even the terminal outcome.
    """

    def __init__(
        self,
        asset: Asset,
        token: CancellationToken,
        *,
        on_progress: Callable[[int], None],
        on_success: Callable[[Path], None],
        on_failure: Callable[[DownloadError], None],
        on_finished: Optional[Callable[[], None]] = None,
        verify: bool = True,
    ) -> None:
        self._asset = asset
        self._token = token
        self._on_progress = on_progress
        self._on_success = on_success
        self._on_failure = on_failure
        self._on_finished = on_finished
        self._verify = verify
        self._last_percent = 0
        self._finished = False

    def handle_progress(self, received: int, total: Optional[int]) -> None:
        if self._finished or self._token.is_cancelled():
            return
        percent = percent_from_bytes(received, total or self._asset.file_size)
        if percent is None or percent <= self._last_percent:
            return
        self._last_percent = percent
        self._on_progress(percent)

    def handle_complete(self, outcome: TransferOutcome) -> None:
        if self._finished:
            return
        self._finished = True
        try:
            if outcome.aborted or self._token.is_cancelled():
                logger.info(
                    "download aborted",
                    extra={"stage": "download", "path": outcome.path},
                )
                return
            if outcome.error is not None:
                self._on_failure(outcome.error)
                return
            if not outcome.ok:
                self._on_failure(
                    DownloadError(
                        f"Download of {self._asset.url} finished with status {outcome.status_code}",
                        status_code=outcome.status_code,
                    )
                )
                return
            if self._verify:
                try:
                    verify_archive(outcome.path, self._asset)
                except DownloadError as exc:
                    outcome.path.unlink(missing_ok=True)
                    self._on_failure(exc)
                    return
            self._on_success(outcome.path)
        finally:
            if self._on_finished is not None:
                self._on_finished()
