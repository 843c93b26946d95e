"""UTC-focused helpers for deterministic run metadata."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from pathlib import Path


def utc_timestamp_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat(timespec="milliseconds")


def file_age_hours(path: Path, now: float | None = None) -> float:
    if not path.exists():
        return float("inf")
    current = time.time() if now is None else now
    return (current - path.stat().st_mtime) / 3600.0


def deadline_after(seconds: float | None, clock=time.monotonic) -> float | None:
    if seconds is None:
        return None
    return clock() + seconds
