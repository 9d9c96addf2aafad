"""Move extracted package files into their installation directory.

Files are moved one by one in sorted order so the cancellation token can be
polled between moves. A cancelled finalize leaves the files moved so far in
place; the local record only lists files once they have been moved.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
from pathlib import Path
from typing import Callable, List, Optional

from .cancellation import CancellationToken
from .errors import CancelledByUser, FinalizeError

logger = logging.getLogger(__name__)

__all__ = ["finalize_install", "list_files"]


def list_files(root: Path) -> List[Path]:
    """Return regular files below ``root`` relative to it, in a stable order."""

    return sorted(path.relative_to(root) for path in root.rglob("*") if path.is_file())


def _move_file(source: Path, target: Path) -> None:
    if target.is_dir():
        raise FinalizeError(f"Destination conflict: {target} is a directory")
    target.parent.mkdir(parents=True, exist_ok=True)
    try:
        os.replace(source, target)
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise
        shutil.move(str(source), str(target))


def finalize_install(
    source: Path,
    destination: Path,
    *,
    token: Optional[CancellationToken] = None,
    on_file: Optional[Callable[[str], None]] = None,
    on_progress: Optional[Callable[[int], None]] = None,
) -> List[str]:
    """Move every file under ``source`` into ``destination``.

    Args:
        source: Intermediate directory produced by the extract phase.
        destination: Resolved installation directory.
        token: Cancellation token polled before each file.
        on_file: Called with the POSIX relative path of each moved file.
        on_progress: Receives the percentage of files moved.

    Returns:
        POSIX relative paths of the installed files.

    Raises:
        FinalizeError: When the source is missing, a destination path conflicts,
            or a move fails.
        CancelledByUser: When ``token`` is cancelled between moves.
    """

    if not source.is_dir():
        raise FinalizeError(f"Extracted files not found: {source}")
    if destination.exists() and not destination.is_dir():
        raise FinalizeError(f"Destination conflict: {destination} is not a directory")

    try:
        destination.mkdir(parents=True, exist_ok=True)
        files = list_files(source)
        installed: List[str] = []
        total = len(files)
        for index, relative in enumerate(files):
            if token is not None:
                token.raise_if_cancelled("finalize")
            _move_file(source / relative, destination / relative)
            name = relative.as_posix()
            installed.append(name)
            if on_file is not None:
                on_file(name)
            if on_progress is not None:
                on_progress(((index + 1) * 100) // total)
    except (FinalizeError, CancelledByUser):
        raise
    except OSError as exc:
        raise FinalizeError(f"Failed to move files into {destination}: {exc}") from exc

    logger.info(
        "finalized package files",
        extra={"stage": "finalize", "path": destination, "files": len(installed)},
    )
    return installed
