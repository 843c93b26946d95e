"""Feed archive acquisition with a freshness cache."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path

from estate_import.common.constants import ARCHIVE_MAGIC, CACHED_ARCHIVE_PREFIX
from estate_import.common.errors import CredentialsMissing, FetchError, FetchTransportError, InvalidArtifact
from estate_import.common.fs import atomic_replace, ensure_dir, temp_path_beside
from estate_import.common.http import HttpClient, RetryConfig, TimeoutConfig
from estate_import.common.logging import log_event, null_logger
from estate_import.common.models import Credentials
from estate_import.common.time_utils import file_age_hours

REACHABLE_STATUSES = frozenset({200, 404})


@dataclass(frozen=True)
class FetchResult:
    path: Path
    source: str
    bytes: int
    duration_seconds: float
    attempts: int

    @property
    def speed_bytes_per_second(self) -> float:
        if self.duration_seconds <= 0:
            return 0.0
        return self.bytes / self.duration_seconds

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "source": self.source,
            "bytes": self.bytes,
            "duration_seconds": round(self.duration_seconds, 3),
            "attempts": self.attempts,
            "speed_bytes_per_second": round(self.speed_bytes_per_second, 1),
        }


def _check_magic(path: Path, archive_format: str) -> None:
    expected = ARCHIVE_MAGIC[archive_format]
    with path.open("rb") as f:
        head = f.read(max(len(magic) for magic in expected))
    if not any(head.startswith(magic) for magic in expected):
        raise InvalidArtifact(
            f"Downloaded file is not a {archive_format} archive (starts with {head[:8]!r})"
        )


class Fetcher:
    """Downloads the feed archive into ``cache_dir`` as ``latest_<filename>``.

    A fresh cached copy is served without touching the network. Downloads go
    to a temp file beside the cache entry and replace it only once the transfer
    and the magic byte check have both succeeded.
    """

    def __init__(
        self,
        source_config,
        cache_dir: Path,
        http_client: HttpClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = source_config
        self.cache_dir = Path(cache_dir)
        self.logger = logger or null_logger()
        self.http_client = http_client or HttpClient(
            timeout=TimeoutConfig(
                connect=source_config.connect_timeout_seconds,
                read=source_config.timeout_seconds,
            ),
            retry=RetryConfig(
                max_attempts=source_config.max_retries,
                wait_seconds=source_config.retry_delay_seconds,
            ),
            verify_ssl=source_config.verify_ssl,
        )

    @property
    def cached_path(self) -> Path:
        return self.cache_dir / f"{CACHED_ARCHIVE_PREFIX}{self.config.filename}"

    def close(self) -> None:
        self.http_client.close()

    def fetch(self, credentials: Credentials | None, force_refresh: bool = False) -> FetchResult:
        target = self.cached_path
        age = file_age_hours(target)
        if not force_refresh and age < self.config.freshness_hours:
            log_event(
                self.logger,
                "Using cached feed archive",
                stage="fetch",
                event="FETCH_CACHE_HIT",
                status="ok",
                path=str(target),
                age_hours=round(age, 2),
            )
            return FetchResult(
                path=target,
                source="cache",
                bytes=target.stat().st_size,
                duration_seconds=0.0,
                attempts=0,
            )

        if credentials is None or not credentials.username or not credentials.password:
            raise CredentialsMissing("Feed credentials are not configured")

        ensure_dir(self.cache_dir)
        tmp = temp_path_beside(target, suffix=".part")
        retries: list[int] = []

        def _on_retry(attempt: int, exc: BaseException | None) -> None:
            retries.append(attempt)
            log_event(
                self.logger,
                f"Download attempt {attempt} failed: {exc}",
                level=logging.WARNING,
                stage="fetch",
                event="FETCH_RETRY",
                status="retry",
                attempt=attempt,
                error_code=getattr(exc, "error_code", None),
            )

        log_event(
            self.logger,
            f"Downloading {self.config.url}",
            stage="fetch",
            event="FETCH_ATTEMPT",
            status="start",
            attempt=1,
        )
        started = time.monotonic()
        try:
            written = self.http_client.download(
                self.config.url,
                tmp,
                auth=(credentials.username, credentials.password),
                max_bytes=self.config.max_archive_bytes,
                chunk_size=self.config.chunk_size,
                on_retry=_on_retry,
            )
            _check_magic(tmp, self.config.archive_format)
            atomic_replace(tmp, target)
        except FetchError as exc:
            log_event(
                self.logger,
                str(exc),
                level=logging.ERROR,
                stage="fetch",
                event="FETCH_FAIL",
                status="failed",
                attempt=len(retries) + 1,
                error_code=exc.error_code,
            )
            raise
        finally:
            if tmp.exists():
                tmp.unlink()

        result = FetchResult(
            path=target,
            source="downloaded",
            bytes=written,
            duration_seconds=time.monotonic() - started,
            attempts=len(retries) + 1,
        )
        log_event(
            self.logger,
            "Feed archive downloaded",
            stage="fetch",
            event="FETCH_OK",
            status="ok",
            attempt=result.attempts,
            duration_ms=int(result.duration_seconds * 1000),
            bytes=result.bytes,
            speed_bytes_per_second=round(result.speed_bytes_per_second, 1),
        )
        return result

    def test_connection(self, credentials: Credentials | None) -> bool:
        auth = (credentials.username, credentials.password) if credentials is not None else None
        try:
            status = self.http_client.head_status(self.config.base_url, auth=auth)
        except FetchTransportError as exc:
            log_event(
                self.logger,
                str(exc),
                level=logging.WARNING,
                stage="fetch",
                event="FETCH_FAIL",
                status="unreachable",
                error_code=exc.error_code,
            )
            return False
        return status in REACHABLE_STATUSES
