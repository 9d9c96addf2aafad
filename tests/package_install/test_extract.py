# === NAVMAP v1 ===
# {
#   "module": "tests.package_install.test_extract",
#   "purpose": "Tests for safe, cancellable archive extraction",
#   "sections": [
#     {"id": "formats", "name": "Formats", "anchor": "formats", "kind": "section"},
#     {"id": "safety", "name": "Safety", "anchor": "safety", "kind": "section"},
#     {"id": "cancellation", "name": "Cancellation", "anchor": "cancellation", "kind": "section"}
#   ]
# }
# === /NAVMAP ===

"""Tests for safe, cancellable archive extraction."""

from __future__ import annotations

import io
import os
import tarfile
import zipfile
from pathlib import Path

import pytest

from Pacm.PackageInstall.cancellation import CancellationToken
from Pacm.PackageInstall.errors import CancelledByUser, ExtractError
from Pacm.PackageInstall.extract import extract_archive, is_supported_archive
from Pacm.PackageInstall.testing import make_zip_archive


def _make_tar(path: Path, files) -> Path:
    with tarfile.open(path, "w:gz") as archive:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return path


# --- Formats ---


def test_zip_extraction_writes_members_and_reports_progress(tmp_path: Path) -> None:
    """ZIP members land under the destination and progress ends at 100."""

    archive = make_zip_archive(tmp_path / "pkg.zip", {"a.txt": "a", "nested/b.txt": "b"})
    reported = []

    extracted = extract_archive(archive, tmp_path / "out", on_progress=reported.append)

    assert sorted(path.relative_to(tmp_path / "out").as_posix() for path in extracted) == [
        "a.txt",
        "nested/b.txt",
    ]
    assert (tmp_path / "out" / "nested" / "b.txt").read_text() == "b"
    assert reported == sorted(reported)
    assert reported[-1] == 100


def test_tar_extraction(tmp_path: Path) -> None:
    """Gzipped tarballs are supported."""

    archive = _make_tar(tmp_path / "pkg.tar.gz", {"lib/x.py": os.urandom(256)})

    extracted = extract_archive(archive, tmp_path / "out")

    assert [path.name for path in extracted] == ["x.py"]


def test_unsupported_suffix(tmp_path: Path) -> None:
    """Unknown suffixes are refused; suffix matching ignores case."""

    archive = tmp_path / "pkg.rar"
    archive.write_bytes(b"rar")

    assert not is_supported_archive(archive.name)
    assert is_supported_archive("PKG.TGZ")
    with pytest.raises(ExtractError, match="Unsupported archive format"):
        extract_archive(archive, tmp_path / "out")


# --- Safety ---


@pytest.mark.parametrize("member", ["../escape.txt", "/abs/path.txt", "a/../../escape.txt"])
def test_unsafe_members_are_rejected(tmp_path: Path, member: str) -> None:
    """Members that would escape the destination abort the extraction."""

    archive = tmp_path / "evil.zip"
    with zipfile.ZipFile(archive, "w") as handle:
        handle.writestr(member, "payload")

    with pytest.raises(ExtractError):
        extract_archive(archive, tmp_path / "out")
    assert not (tmp_path / "escape.txt").exists()


def test_corrupt_zip_raises_extract_error(tmp_path: Path) -> None:
    """A file that is not a ZIP archive raises ExtractError."""

    archive = tmp_path / "broken.zip"
    archive.write_bytes(b"this is not a zip archive")

    with pytest.raises(ExtractError, match="Corrupt ZIP"):
        extract_archive(archive, tmp_path / "out")


def test_compression_bombs_are_refused(tmp_path: Path) -> None:
    """Members with an absurd compression ratio are not expanded."""

    archive = tmp_path / "bomb.zip"
    with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as handle:
        handle.writestr("zeros.bin", b"\0" * (2 * 1024 * 1024))

    with pytest.raises(ExtractError, match="refusing to extract"):
        extract_archive(archive, tmp_path / "out")


# --- Cancellation ---


def test_cancelled_token_stops_extraction(tmp_path: Path) -> None:
    """A cancelled token stops extraction before any member is written."""

    archive = make_zip_archive(tmp_path / "pkg.zip", {"a.txt": "a", "b.txt": "b"})
    token = CancellationToken()
    token.cancel()

    with pytest.raises(CancelledByUser):
        extract_archive(archive, tmp_path / "out", token=token)
    assert not (tmp_path / "out" / "a.txt").exists()
