"""Filesystem helpers."""

from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from estate_import.common.errors import LockHeld


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def read_yaml(path: Path):
    import yaml

    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def temp_path_beside(path: Path, suffix: str = ".part") -> Path:
    ensure_dir(path.parent)
    fd, name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=suffix, dir=path.parent)
    os.close(fd)
    return Path(name)


def atomic_replace(source: Path, target: Path) -> Path:
    """Move ``source`` over ``target`` in one rename; both must share a filesystem."""
    ensure_dir(target.parent)
    os.replace(source, target)
    return target


def write_json(path: Path, payload) -> None:
    tmp = temp_path_beside(path, suffix=".json.tmp")
    try:
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2, sort_keys=True)
            f.write("\n")
        atomic_replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()


def read_json(path: Path):
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


@contextmanager
def run_lock(path: Path) -> Iterator[Path]:
    """Exclusive lock file; a second holder fails fast with LockHeld."""
    ensure_dir(path.parent)
    try:
        fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError as exc:
        raise LockHeld(f"Another import holds {path}") from exc
    try:
        os.write(fd, str(os.getpid()).encode("ascii"))
        os.close(fd)
        yield path
    finally:
        if path.exists():
            path.unlink()
