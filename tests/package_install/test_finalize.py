# === NAVMAP v1 ===
# {
#   "module": "tests.package_install.test_finalize",
#   "purpose": "Tests for moving extracted files into the installation directory",
#   "sections": [
#     {"id": "moves", "name": "Moves", "anchor": "moves", "kind": "section"},
#     {"id": "errors", "name": "Errors", "anchor": "errors", "kind": "section"}
#   ]
# }
# === /NAVMAP ===

"""Tests for moving extracted files into the installation directory."""

from __future__ import annotations

from pathlib import Path

import pytest

from Pacm.PackageInstall.cancellation import CancellationToken
from Pacm.PackageInstall.errors import CancelledByUser, FinalizeError
from Pacm.PackageInstall.finalize import finalize_install, list_files


def _populate(root: Path) -> None:
    (root / "lib").mkdir(parents=True)
    (root / "plugin.json").write_text("{}")
    (root / "lib" / "module.py").write_text("VALUE = 1\n")


# --- Moves ---


def test_files_are_moved_and_reported(tmp_path: Path) -> None:
    """Files move in sorted order and each one is reported as it lands."""

    source, destination = tmp_path / "intermediate", tmp_path / "install"
    _populate(source)
    seen, reported = [], []

    installed = finalize_install(source, destination, on_file=seen.append, on_progress=reported.append)

    assert installed == ["lib/module.py", "plugin.json"]
    assert seen == installed
    assert reported == [50, 100]
    assert (destination / "lib" / "module.py").read_text() == "VALUE = 1\n"
    assert list_files(source) == []


def test_existing_files_are_replaced(tmp_path: Path) -> None:
    """Reinstalling overwrites files from an earlier install."""

    source, destination = tmp_path / "intermediate", tmp_path / "install"
    _populate(source)
    destination.mkdir()
    (destination / "plugin.json").write_text("old")

    finalize_install(source, destination)

    assert (destination / "plugin.json").read_text() == "{}"


def test_cancellation_between_files(tmp_path: Path) -> None:
    """Files moved before the cancel stay in place; the rest are not moved."""

    source, destination = tmp_path / "intermediate", tmp_path / "install"
    _populate(source)
    token = CancellationToken()

    def cancel_after_first(name: str) -> None:
        token.cancel()

    with pytest.raises(CancelledByUser):
        finalize_install(source, destination, token=token, on_file=cancel_after_first)

    assert list_files(destination) == [Path("lib/module.py")]


# --- Errors ---


def test_missing_source_raises(tmp_path: Path) -> None:
    """A missing intermediate directory is a FinalizeError."""
    with pytest.raises(FinalizeError, match="not found"):
        finalize_install(tmp_path / "missing", tmp_path / "install")


def test_destination_file_conflict_raises(tmp_path: Path) -> None:
    """An installation directory that is a file is a FinalizeError."""

    source = tmp_path / "intermediate"
    _populate(source)
    destination = tmp_path / "install"
    destination.write_text("not a directory")

    with pytest.raises(FinalizeError, match="Destination conflict"):
        finalize_install(source, destination)


def test_directory_in_place_of_a_file_raises(tmp_path: Path) -> None:
    """A directory occupying a package file's path stops the move there."""

    source, destination = tmp_path / "intermediate", tmp_path / "install"
    _populate(source)
    (destination / "plugin.json").mkdir(parents=True)
    seen = []

    with pytest.raises(FinalizeError, match="is a directory"):
        finalize_install(source, destination, on_file=seen.append)

    assert seen == ["lib/module.py"]
