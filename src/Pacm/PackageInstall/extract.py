# === NAVMAP v1 ===
# {
#   "module": "Pacm.PackageInstall.extract",
#   "purpose": "Safe, cancellable extraction of staged package archives into the intermediate directory",
#   "sections": [
#     {"id": "paths", "name": "Member Path Validation", "anchor": "PTH", "kind": "helpers"},
#     {"id": "zip", "name": "ZIP Extraction", "anchor": "ZIP", "kind": "api"},
#     {"id": "tar", "name": "TAR Extraction", "anchor": "TAR", "kind": "api"},
#     {"id": "dispatch", "name": "extract_archive", "anchor": "DSP", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Archive extraction for the extract phase.

Members are validated before anything is written: absolute paths, ``..``
segments, links and device files are rejected. The cancellation token is polled
before each member is written, and ``on_progress`` receives the percentage of
members processed so the task can report extraction progress on a fresh 0-100
scale.
"""

from __future__ import annotations

import logging
import shutil
import stat
import tarfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from .cancellation import CancellationToken
from .errors import CancelledByUser, ExtractError

logger = logging.getLogger(__name__)

_MAX_COMPRESSION_RATIO = 100.0
_TAR_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".tar.xz", ".txz", ".tar.bz2", ".tbz2")

ProgressCallback = Callable[[int], None]
M = TypeVar("M")

__all__ = ["extract_archive", "extract_tar", "extract_zip", "is_supported_archive"]


def _validate_member_path(member_name: str) -> Path:
    normalized = member_name.replace("\\", "/")
    relative = PurePosixPath(normalized)
    if relative.is_absolute():
        raise ExtractError(f"Unsafe absolute path detected in archive: {member_name}")
    parts = [part for part in relative.parts if part not in {"", "."}]
    if not parts:
        raise ExtractError(f"Empty path detected in archive: {member_name}")
    if ".." in parts:
        raise ExtractError(f"Unsafe path detected in archive: {member_name}")
    return Path(*parts)


def _check_compression_ratio(total_uncompressed: int, compressed_size: int, archive: Path) -> None:
    if compressed_size <= 0:
        return
    ratio = total_uncompressed / float(compressed_size)
    if ratio > _MAX_COMPRESSION_RATIO:
        logger.error(
            "archive compression ratio too high",
            extra={"stage": "extract", "path": archive, "error": f"ratio={ratio:.1f}"},
        )
        raise ExtractError(
            f"Archive {archive.name} expands to {total_uncompressed} bytes "
            f"(ratio {ratio:.1f}), refusing to extract"
        )


def _checkpoint(
    token: Optional[CancellationToken],
    on_progress: Optional[ProgressCallback],
    done: int,
    total: int,
) -> None:
    if token is not None:
        token.raise_if_cancelled("extract")
    if on_progress is not None and total:
        on_progress((done * 100) // total)


def _write_members(
    members: Sequence[Tuple[M, Path]],
    destination: Path,
    *,
    is_dir: Callable[[M], bool],
    open_member: Callable[[M], object],
    token: Optional[CancellationToken],
    on_progress: Optional[ProgressCallback],
) -> List[Path]:
    extracted: List[Path] = []
    total = len(members)
    for index, (member, member_path) in enumerate(members):
        _checkpoint(token, on_progress, index, total)
        target_path = destination / member_path
        if is_dir(member):
            target_path.mkdir(parents=True, exist_ok=True)
            continue
        target_path.parent.mkdir(parents=True, exist_ok=True)
        source = open_member(member)
        if source is None:
            raise ExtractError(f"Failed to read archive member: {member_path}")
        with source as reader, target_path.open("wb") as target:  # type: ignore[attr-defined]
            shutil.copyfileobj(reader, target)
        extracted.append(target_path)
    _checkpoint(token, on_progress, total, total)
    return extracted


def extract_zip(
    zip_path: Path,
    destination: Path,
    *,
    token: Optional[CancellationToken] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> List[Path]:
    """Extract a ZIP archive while preventing path traversal."""

    if not zip_path.exists():
        raise ExtractError(f"ZIP archive not found: {zip_path}")
    destination.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(zip_path) as archive:
            members = archive.infolist()
            safe_members: List[Tuple[zipfile.ZipInfo, Path]] = []
            total_uncompressed = 0
            for member in members:
                member_path = _validate_member_path(member.filename)
                mode = (member.external_attr >> 16) & 0xFFFF
                if stat.S_IFMT(mode) == stat.S_IFLNK:
                    raise ExtractError(f"Unsafe link detected in archive: {member.filename}")
                if not member.is_dir():
                    total_uncompressed += int(member.file_size)
                safe_members.append((member, member_path))
            _check_compression_ratio(total_uncompressed, zip_path.stat().st_size, zip_path)
            extracted = _write_members(
                safe_members,
                destination,
                is_dir=lambda member: member.is_dir(),
                open_member=lambda member: archive.open(member, "r"),
                token=token,
                on_progress=on_progress,
            )
    except zipfile.BadZipFile as exc:
        raise ExtractError(f"Corrupt ZIP archive {zip_path}: {exc}") from exc
    return extracted


def extract_tar(
    tar_path: Path,
    destination: Path,
    *,
    token: Optional[CancellationToken] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> List[Path]:
    """Safely extract tar archives (tar, tar.gz, tar.xz, tar.bz2)."""

    if not tar_path.exists():
        raise ExtractError(f"TAR archive not found: {tar_path}")
    destination.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(tar_path, mode="r:*") as archive:
            safe_members: List[Tuple[tarfile.TarInfo, Path]] = []
            total_uncompressed = 0
            for member in archive.getmembers():
                member_path = _validate_member_path(member.name)
                if member.isdir():
                    safe_members.append((member, member_path))
                    continue
                if member.islnk() or member.issym():
                    raise ExtractError(f"Unsafe link detected in archive: {member.name}")
                if not member.isfile():
                    raise ExtractError(f"Unsupported tar member type encountered: {member.name}")
                total_uncompressed += int(member.size)
                safe_members.append((member, member_path))
            _check_compression_ratio(total_uncompressed, tar_path.stat().st_size, tar_path)
            extracted = _write_members(
                safe_members,
                destination,
                is_dir=lambda member: member.isdir(),
                open_member=archive.extractfile,
                token=token,
                on_progress=on_progress,
            )
    except tarfile.TarError as exc:
        raise ExtractError(f"Failed to extract tar archive {tar_path}: {exc}") from exc
    return extracted


def is_supported_archive(file_name: str) -> bool:
    lower_name = file_name.lower()
    return lower_name.endswith(".zip") or lower_name.endswith(_TAR_SUFFIXES)


def extract_archive(
    archive_path: Path,
    destination: Path,
    *,
    token: Optional[CancellationToken] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> List[Path]:
    """Extract ``archive_path`` into ``destination``.

    Args:
        archive_path: Staged archive; the format is chosen from its suffix.
        destination: Intermediate directory that receives the files.
        token: Cancellation token polled before each member.
        on_progress: Receives the percentage of members written.

    Returns:
        Paths of the extracted regular files.

    Raises:
        ExtractError: On unsupported formats, unsafe members, corrupt archives,
            or I/O failures.
        CancelledByUser: When ``token`` is cancelled between members.
    """

    lower_name = archive_path.name.lower()
    try:
        if lower_name.endswith(".zip"):
            extracted = extract_zip(archive_path, destination, token=token, on_progress=on_progress)
        elif lower_name.endswith(_TAR_SUFFIXES):
            extracted = extract_tar(archive_path, destination, token=token, on_progress=on_progress)
        else:
            raise ExtractError(f"Unsupported archive format: {archive_path.name}")
    except (ExtractError, CancelledByUser):
        raise
    except OSError as exc:
        raise ExtractError(f"I/O error while extracting {archive_path}: {exc}") from exc
    logger.info(
        "extracted archive",
        extra={"stage": "extract", "path": archive_path, "files": len(extracted)},
    )
    return extracted
