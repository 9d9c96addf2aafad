# === NAVMAP v1 ===
# {
#   "module": "tests.package_install.test_httpx_transport",
#   "purpose": "HTTPX MockTransport-based coverage for the streaming download transport",
#   "sections": [
#     {"id": "transfers", "name": "Transfers", "anchor": "transfers", "kind": "section"},
#     {"id": "failures", "name": "Failures", "anchor": "failures", "kind": "section"}
#   ]
# }
# === /NAVMAP ===

"""HTTPX MockTransport-based coverage for the streaming download transport."""

from __future__ import annotations

import asyncio
import threading
from pathlib import Path

import httpx
import pytest

from Pacm.PackageInstall.download import DownloadRequest, HttpxDownloadTransport, TransferOutcome
from Pacm.PackageInstall.eventloop import EventLoopThread
from Pacm.PackageInstall.settings import DownloadConfiguration


@pytest.fixture
def loop():
    thread = EventLoopThread(name="pacm-test-loop")
    yield thread
    thread.stop()


class Collector:
    def __init__(self) -> None:
        self.progress = []
        self.outcomes = []
        self.done = threading.Event()

    def on_progress(self, received, total) -> None:
        self.progress.append((received, total))

    def on_complete(self, outcome: TransferOutcome) -> None:
        self.outcomes.append(outcome)
        self.done.set()


def _config() -> DownloadConfiguration:
    return DownloadConfiguration(chunk_size=1024)


# --- Transfers ---


def test_successful_transfer_streams_into_destination(loop, tmp_path: Path) -> None:
    """Bytes land at the destination and progress reports carry the content length."""

    payload = b"z" * 4096

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.headers["User-Agent"].startswith("pacm-installer")
        return httpx.Response(200, content=payload)

    collector = Collector()
    client = HttpxDownloadTransport(loop, _config(), transport=httpx.MockTransport(handler))
    destination = tmp_path / "staging" / "pkg.zip"

    client.open(
        DownloadRequest(url="https://example.org/pkg.zip", destination=destination),
        on_progress=collector.on_progress,
        on_complete=collector.on_complete,
    )

    assert collector.done.wait(5)
    (outcome,) = collector.outcomes
    assert outcome.ok
    assert outcome.bytes_received == len(payload)
    assert destination.read_bytes() == payload
    assert not destination.with_name("pkg.zip.part").exists()
    assert collector.progress[-1] == (len(payload), len(payload))


# --- Failures ---


def test_error_status_reports_download_error(loop, tmp_path: Path) -> None:
    """A 404 fails without writing the destination file."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, content=b"missing")

    collector = Collector()
    client = HttpxDownloadTransport(loop, _config(), transport=httpx.MockTransport(handler))
    destination = tmp_path / "pkg.zip"

    client.open(
        DownloadRequest(url="https://example.org/missing.zip", destination=destination),
        on_progress=collector.on_progress,
        on_complete=collector.on_complete,
    )

    assert collector.done.wait(5)
    (outcome,) = collector.outcomes
    assert not outcome.ok
    assert outcome.status_code == 404
    assert outcome.error is not None and outcome.error.status_code == 404
    assert not outcome.error.retryable
    assert collector.progress == []
    assert not destination.exists()


def test_transport_errors_are_retryable(loop, tmp_path: Path) -> None:
    """Connection failures carry no status and may be retried."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    collector = Collector()
    client = HttpxDownloadTransport(loop, _config(), transport=httpx.MockTransport(handler))

    client.open(
        DownloadRequest(url="https://example.org/pkg.zip", destination=tmp_path / "pkg.zip"),
        on_progress=collector.on_progress,
        on_complete=collector.on_complete,
    )

    assert collector.done.wait(5)
    (outcome,) = collector.outcomes
    assert outcome.error is not None
    assert outcome.error.retryable
    assert outcome.status_code is None


def test_abort_reports_a_single_aborted_outcome(loop, tmp_path: Path) -> None:
    """Aborting an in-flight transfer removes the partial file and reports once."""

    release = asyncio.Event()
    started = threading.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        started.set()
        await release.wait()
        return httpx.Response(200, content=b"never")

    collector = Collector()
    client = HttpxDownloadTransport(loop, _config(), transport=httpx.MockTransport(handler))
    destination = tmp_path / "pkg.zip"

    connection = client.open(
        DownloadRequest(url="https://example.org/slow.zip", destination=destination),
        on_progress=collector.on_progress,
        on_complete=collector.on_complete,
    )
    assert started.wait(5)
    connection.abort()

    assert collector.done.wait(5)
    (outcome,) = collector.outcomes
    assert outcome.aborted
    assert not outcome.ok
    assert not destination.exists()
