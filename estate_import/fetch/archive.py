"""Payload extraction and working directory housekeeping."""

from __future__ import annotations

import shutil
import tarfile
import time
import zipfile
import zlib
from pathlib import Path
from typing import IO

from estate_import.common.deterministic import stable_sorted
from estate_import.common.errors import InvalidArtifact, NoPayloadFound
from estate_import.common.fs import atomic_replace, ensure_dir, temp_path_beside

# A damaged member only shows up while it is being read.
_CORRUPT_ARCHIVE_ERRORS = (zipfile.BadZipFile, tarfile.TarError, zlib.error, EOFError, OSError)


def _wanted(name: str, extension: str) -> bool:
    base = name.rsplit("/", 1)[-1]
    return bool(base) and not base.startswith(".") and base.lower().endswith(extension.lower())


def _copy_member(stream: IO[bytes], member_name: str, target_dir: Path) -> Path:
    # Only the base name is used, so member paths cannot escape target_dir.
    target = target_dir / member_name.rsplit("/", 1)[-1]
    tmp = temp_path_beside(target, suffix=".extract")
    try:
        with tmp.open("wb") as out:
            shutil.copyfileobj(stream, out, length=1024 * 1024)
        atomic_replace(tmp, target)
    finally:
        if tmp.exists():
            tmp.unlink()
    return target


def _extract_zip(archive_path: Path, target_dir: Path, extension: str) -> Path:
    try:
        with zipfile.ZipFile(archive_path) as zf:
            names = sorted(info.filename for info in zf.infolist() if not info.is_dir())
            matches = [name for name in names if _wanted(name, extension)]
            if not matches:
                raise NoPayloadFound(f"No *{extension} file inside {archive_path.name}")
            with zf.open(matches[0]) as stream:
                return _copy_member(stream, matches[0], target_dir)
    except _CORRUPT_ARCHIVE_ERRORS as exc:
        raise InvalidArtifact(f"Corrupt archive {archive_path.name}: {exc}") from exc


def _extract_tar(archive_path: Path, target_dir: Path, extension: str) -> Path:
    try:
        with tarfile.open(archive_path, mode="r:*") as tf:
            members = stable_sorted((m for m in tf.getmembers() if m.isfile()), key=lambda m: m.name)
            matches = [m for m in members if _wanted(m.name, extension)]
            if not matches:
                raise NoPayloadFound(f"No *{extension} file inside {archive_path.name}")
            stream = tf.extractfile(matches[0])
            if stream is None:
                raise NoPayloadFound(f"Archive member {matches[0].name} is not readable")
            with stream:
                return _copy_member(stream, matches[0].name, target_dir)
    except _CORRUPT_ARCHIVE_ERRORS as exc:
        raise InvalidArtifact(f"Corrupt archive {archive_path.name}: {exc}") from exc


def extract_payload(archive_path: Path, target_dir: Path, extension: str = ".xml") -> Path:
    """Extract the single payload file from a tar or zip archive.

    When several members match, the first in sorted member-name order wins.
    """
    archive_path = Path(archive_path)
    target_dir = Path(target_dir)
    if not archive_path.exists():
        raise NoPayloadFound(f"Archive not found: {archive_path}")
    ensure_dir(target_dir)
    if zipfile.is_zipfile(archive_path):
        return _extract_zip(archive_path, target_dir, extension)
    return _extract_tar(archive_path, target_dir, extension)


def cleanup_stale_files(directory: Path, max_age_hours: float = 24.0, now: float | None = None) -> list[Path]:
    directory = Path(directory)
    if not directory.exists():
        return []
    cutoff = (time.time() if now is None else now) - max_age_hours * 3600.0
    removed: list[Path] = []
    for path in sorted(directory.iterdir()):
        if not path.is_file():
            continue
        if path.stat().st_mtime < cutoff:
            path.unlink()
            removed.append(path)
    return removed
