"""End-to-end import run with fail-soft record handling."""

from __future__ import annotations

import logging
import resource
import time
from collections import Counter
from dataclasses import dataclass, field
from itertools import islice
from pathlib import Path
from typing import Iterable, Iterator, TypeVar

from estate_import.common.errors import DeadlineExceeded, DecodeError, PipelineError
from estate_import.common.ids import generate_run_id
from estate_import.common.logging import log_event, null_logger
from estate_import.common.models import Credentials, Listing
from estate_import.common.time_utils import utc_timestamp_iso
from estate_import.fetch.archive import extract_payload
from estate_import.fetch.downloader import Fetcher
from estate_import.pipeline.decoder import DecodeSession, StreamingDecoder
from estate_import.pipeline.reconcile import DestinationStore, OperationAction, OperationOutcome, ReconciliationEngine
from estate_import.pipeline.transform import RecordTransformer

T = TypeVar("T")

DEFAULT_WORK_DIR = Path("data") / "cache"


@dataclass
class RunReport:
    run_id: str
    status: str = "running"
    total: int = 0
    valid: int = 0
    filtered: int = 0
    invalid: int = 0
    created: int = 0
    updated: int = 0
    skipped_unchanged: int = 0
    skipped_existing: int = 0
    failed: int = 0
    batches: int = 0
    errors: list[dict] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    categories: Counter = field(default_factory=Counter)
    regions: Counter = field(default_factory=Counter)
    record_element: str | None = None
    strategy: str | None = None
    truncated: bool = False
    deadline_reached: bool = False
    fetch: dict | None = None
    fatal_error: dict | None = None
    started_at: str | None = None
    finished_at: str | None = None
    duration_seconds: float = 0.0
    peak_memory_kb: int | None = None

    def add_error(self, record_index: int | None, external_id: str | None, error: PipelineError) -> None:
        self.errors.append(
            {
                "record_index": record_index,
                "external_id": external_id,
                "error_code": error.error_code,
                "message": str(error),
            }
        )

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "counts": {
                "total": self.total,
                "valid": self.valid,
                "filtered": self.filtered,
                "invalid": self.invalid,
                "created": self.created,
                "updated": self.updated,
                "skipped_unchanged": self.skipped_unchanged,
                "skipped_existing": self.skipped_existing,
                "failed": self.failed,
            },
            "batches": self.batches,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "categories": dict(sorted(self.categories.items())),
            "regions": dict(sorted(self.regions.items())),
            "record_element": self.record_element,
            "strategy": self.strategy,
            "truncated": self.truncated,
            "deadline_reached": self.deadline_reached,
            "fetch": self.fetch,
            "fatal_error": self.fatal_error,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_seconds": round(self.duration_seconds, 3),
            "peak_memory_kb": self.peak_memory_kb,
        }


def iter_batches(iterable: Iterable[T], size: int) -> Iterator[list[T]]:
    if size <= 0:
        raise ValueError("Batch size must be positive")
    iterator = iter(iterable)
    while True:
        batch = list(islice(iterator, size))
        if not batch:
            return
        yield batch


def _peak_memory_kb() -> int:
    return int(resource.getrusage(resource.RUSAGE_SELF).ru_maxrss)


class _AcceptedListings:
    """Decoded and transformed listings that should reach the store.

    Counts every record on the report as it passes. A decode failure ends the
    iteration normally and is kept on ``error`` so that listings already
    accepted still get reconciled.
    """

    def __init__(self, session: DecodeSession, transformer: RecordTransformer, report: RunReport) -> None:
        self.session = session
        self.transformer = transformer
        self.report = report
        self.error: DecodeError | None = None

    def __iter__(self) -> Iterator[tuple[int, Listing]]:
        report = self.report
        try:
            for index, raw in enumerate(self.session):
                report.total += 1
                result = self.transformer.transform(raw, record_index=index)
                if result.error is not None:
                    report.invalid += 1
                    report.add_error(index, result.external_id, result.error)
                    continue
                listing = result.listing
                if listing.filtered:
                    report.filtered += 1
                    continue
                report.valid += 1
                report.categories[listing.category.value] += 1
                report.regions[listing.region or "unresolved"] += 1
                yield index, listing
        except DecodeError as exc:
            self.error = exc


def _tally(report: RunReport, outcomes: list[OperationOutcome]) -> None:
    for outcome in outcomes:
        if outcome.action is OperationAction.CREATED:
            report.created += 1
        elif outcome.action is OperationAction.UPDATED:
            report.updated += 1
        elif outcome.action is OperationAction.SKIPPED_UNCHANGED:
            report.skipped_unchanged += 1
        elif outcome.action is OperationAction.SKIPPED_EXISTING:
            report.skipped_existing += 1
        else:
            report.failed += 1
            report.add_error(outcome.record_index, outcome.external_id, outcome.error)


def _resolve_payload(
    config,
    credentials: Credentials | None,
    force_refresh: bool,
    input_path: Path | None,
    fetcher: Fetcher | None,
    work_dir: Path,
    report: RunReport,
    logger: logging.Logger,
) -> Path:
    extension = config.source.payload_extension
    if input_path is not None:
        input_path = Path(input_path)
        if input_path.name.lower().endswith(extension.lower()):
            return input_path
        archive = input_path
    else:
        fetcher = fetcher or Fetcher(config.source, work_dir, logger=logger)
        result = fetcher.fetch(credentials, force_refresh=force_refresh)
        report.fetch = result.to_dict()
        archive = result.path

    payload = extract_payload(archive, work_dir / "extracted", extension=extension)
    log_event(
        logger,
        f"Extracted {payload.name}",
        run_id=report.run_id,
        stage="fetch",
        event="EXTRACT_OK",
        status="ok",
        bytes=payload.stat().st_size,
    )
    return payload


def _finish(report: RunReport, started: float) -> None:
    report.finished_at = utc_timestamp_iso()
    report.duration_seconds = time.monotonic() - started
    report.peak_memory_kb = _peak_memory_kb()
    if report.fatal_error is not None:
        report.status = "failed"
    elif report.errors or report.truncated or report.deadline_reached:
        report.status = "partial"
    else:
        report.status = "success"


def run_import(
    config,
    store: DestinationStore,
    credentials: Credentials | None = None,
    force_refresh: bool = False,
    input_path: Path | None = None,
    deadline: float | None = None,
    logger: logging.Logger | None = None,
    run_id: str | None = None,
    fetcher: Fetcher | None = None,
    work_dir: Path | None = None,
) -> RunReport:
    """Fetch, decode, transform and reconcile one feed.

    Always returns the report: fetch and decode failures end the run and are
    recorded in ``fatal_error``; record level failures go to ``errors``.
    ``deadline`` is a ``time.monotonic()`` value checked between batches.
    """
    logger = logger or null_logger()
    report = RunReport(run_id=run_id or generate_run_id(), started_at=utc_timestamp_iso())
    started = time.monotonic()
    work_dir = Path(work_dir) if work_dir is not None else DEFAULT_WORK_DIR
    checkpoint = getattr(store, "flush", None)

    log_event(logger, "Import run start", run_id=report.run_id, stage="run", event="RUN_START", status="start")
    try:
        payload = _resolve_payload(config, credentials, force_refresh, input_path, fetcher, work_dir, report, logger)
        session = StreamingDecoder(config.decoder, logger=logger).decode(payload)
        report.strategy = session.strategy.value
        transformer = RecordTransformer(config.transform, logger=logger)
        engine = ReconciliationEngine(
            store,
            policy=config.reconcile.duplicate_policy,
            deadline=deadline,
            logger=logger,
        )
        accepted = _AcceptedListings(session, transformer, report)
        try:
            for batch in iter_batches(accepted, config.reconcile.batch_size):
                outcomes = engine.reconcile(
                    [listing for _, listing in batch],
                    record_indexes=[index for index, _ in batch],
                )
                report.batches += 1
                _tally(report, outcomes)
                if checkpoint is not None:
                    checkpoint()
        finally:
            report.record_element = session.record_element
            report.truncated = session.truncated
            session.close()
            if checkpoint is not None:
                checkpoint()

        if session.truncated:
            report.warnings.append(f"RECORD_LIMIT_TRUNCATED: stopped after {session.records_decoded} records")
        if accepted.error is not None:
            raise accepted.error
    except DeadlineExceeded as exc:
        report.deadline_reached = True
        report.warnings.append(f"{exc.error_code}: {exc}")
        log_event(
            logger,
            str(exc),
            level=logging.WARNING,
            run_id=report.run_id,
            stage="reconcile",
            event="DEADLINE_REACHED",
            status="stopped",
            error_code=exc.error_code,
        )
    except PipelineError as exc:
        report.fatal_error = {"error_code": exc.error_code, "message": str(exc)}
        position = getattr(exc, "position", None)
        if position is not None:
            report.fatal_error["position"] = list(position)
        log_event(
            logger,
            str(exc),
            level=logging.ERROR,
            run_id=report.run_id,
            stage="run",
            event="RUN_FAIL",
            status="failed",
            error_code=exc.error_code,
        )

    _finish(report, started)
    log_event(
        logger,
        "Import run end",
        run_id=report.run_id,
        stage="run",
        event="RUN_END",
        status=report.status,
        duration_ms=int(report.duration_seconds * 1000),
        records_in=report.total,
        records_out=report.created + report.updated + report.skipped_unchanged,
    )
    return report
