"""Batched lookup-then-write reconciliation against a destination store.

Lookup and write are two separate store calls, so two runs against the same
destination can both see a listing as absent and both create it. Callers
must serialise runs per destination; the CLI does so with a lock file.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Protocol, Sequence

from estate_import.common.deterministic import compute_fingerprint
from estate_import.common.errors import DeadlineExceeded, ReconciliationError
from estate_import.common.logging import log_event, null_logger
from estate_import.common.models import DuplicatePolicy, Listing


@dataclass(frozen=True)
class StoredRef:
    internal_id: str
    fingerprint: str | None


class DestinationStore(Protocol):
    def lookup(self, external_id: str) -> StoredRef | None: ...

    def create(self, listing: Listing) -> str: ...

    def update(self, internal_id: str, listing: Listing) -> None: ...

    def touch(self, internal_id: str) -> None: ...


class OperationAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED_UNCHANGED = "skipped_unchanged"
    SKIPPED_EXISTING = "skipped_existing"
    FAILED = "failed"


@dataclass(frozen=True)
class OperationOutcome:
    record_index: int
    external_id: str
    action: OperationAction
    internal_id: str | None = None
    error: ReconciliationError | None = None


def _timestamp_suffix() -> str:
    return str(int(time.time()))


def with_new_identity(listing: Listing, suffix: str) -> Listing:
    external_id = f"{listing.external_id}_{suffix}"
    return replace(
        listing,
        external_id=external_id,
        content_fingerprint=compute_fingerprint(
            external_id,
            listing.title,
            listing.price_sale,
            listing.price_rent,
            listing.description,
        ),
    )


class ReconciliationEngine:
    def __init__(
        self,
        store: DestinationStore,
        policy: DuplicatePolicy = DuplicatePolicy.UPDATE,
        deadline: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        new_identity_suffix: Callable[[], str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.policy = DuplicatePolicy(policy)
        self.deadline = deadline
        self.clock = clock
        self.new_identity_suffix = new_identity_suffix or _timestamp_suffix
        self.logger = logger or null_logger()
        self.batches = 0

    def reconcile(
        self,
        batch: Sequence[Listing],
        record_indexes: Sequence[int] | None = None,
    ) -> list[OperationOutcome]:
        """Resolve every listing of ``batch``; a failing record never stops the others.

        The deadline is only checked here, before any write of the batch.
        """
        if self.deadline is not None and self.clock() >= self.deadline:
            raise DeadlineExceeded(f"Deadline reached before batch {self.batches + 1}")
        if record_indexes is None:
            record_indexes = range(len(batch))

        self.batches += 1
        log_event(
            self.logger,
            f"Batch {self.batches} start",
            level=logging.DEBUG,
            stage="reconcile",
            event="BATCH_START",
            status="start",
            records_in=len(batch),
        )
        outcomes = [self._resolve(index, listing) for index, listing in zip(record_indexes, batch)]
        log_event(
            self.logger,
            f"Batch {self.batches} done",
            stage="reconcile",
            event="BATCH_END",
            status="ok",
            records_in=len(batch),
            records_out=sum(1 for outcome in outcomes if outcome.action is not OperationAction.FAILED),
        )
        return outcomes

    def _resolve(self, record_index: int, listing: Listing) -> OperationOutcome:
        try:
            return self._decide(record_index, listing)
        except Exception as exc:
            error = exc if isinstance(exc, ReconciliationError) else ReconciliationError(str(exc) or type(exc).__name__)
            log_event(
                self.logger,
                f"Store rejected listing: {error}",
                level=logging.WARNING,
                stage="reconcile",
                event="RECORD_FAILED",
                status="failed",
                record_index=record_index,
                external_id=listing.external_id,
                error_code=error.error_code,
            )
            return OperationOutcome(
                record_index=record_index,
                external_id=listing.external_id,
                action=OperationAction.FAILED,
                error=error,
            )

    def _decide(self, record_index: int, listing: Listing) -> OperationOutcome:
        existing = self.store.lookup(listing.external_id)
        if existing is None:
            internal_id = self.store.create(listing)
            return OperationOutcome(record_index, listing.external_id, OperationAction.CREATED, internal_id)

        if self.policy is DuplicatePolicy.SKIP:
            return OperationOutcome(record_index, listing.external_id, OperationAction.SKIPPED_EXISTING, existing.internal_id)
        if self.policy is DuplicatePolicy.FORCE_NEW:
            renamed = with_new_identity(listing, self.new_identity_suffix())
            internal_id = self.store.create(renamed)
            return OperationOutcome(record_index, renamed.external_id, OperationAction.CREATED, internal_id)

        if existing.fingerprint == listing.content_fingerprint:
            self.store.touch(existing.internal_id)
            return OperationOutcome(
                record_index, listing.external_id, OperationAction.SKIPPED_UNCHANGED, existing.internal_id
            )
        self.store.update(existing.internal_id, listing)
        return OperationOutcome(record_index, listing.external_id, OperationAction.UPDATED, existing.internal_id)
