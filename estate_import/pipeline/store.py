"""JSON state file acting as the destination store."""

from __future__ import annotations

from pathlib import Path

from estate_import.common.errors import ReconciliationError
from estate_import.common.fs import read_json, write_json
from estate_import.common.ids import format_internal_id
from estate_import.common.models import Listing
from estate_import.common.time_utils import utc_timestamp_iso
from estate_import.pipeline.reconcile import StoredRef


class StateFileStore:
    """Listings keyed by external id, persisted as one JSON document.

    ``path=None`` keeps everything in memory. Changes reach disk only on
    ``flush()``, which the runner calls after every batch.
    """

    def __init__(self, path: Path | None) -> None:
        self.path = Path(path) if path is not None else None
        self._listings: dict[str, dict] = {}
        self._by_internal_id: dict[str, str] = {}
        self._sequence = 0
        self._dirty = False
        if self.path is not None and self.path.exists():
            self._load(read_json(self.path))

    def _load(self, payload: dict) -> None:
        self._listings = dict(payload.get("listings", {}))
        self._sequence = int(payload.get("sequence", 0))
        self._by_internal_id = {entry["internal_id"]: external_id for external_id, entry in self._listings.items()}

    def __len__(self) -> int:
        return len(self._listings)

    def __contains__(self, external_id: object) -> bool:
        return external_id in self._listings

    def get(self, external_id: str) -> dict | None:
        return self._listings.get(external_id)

    def lookup(self, external_id: str) -> StoredRef | None:
        entry = self._listings.get(external_id)
        if entry is None:
            return None
        return StoredRef(internal_id=entry["internal_id"], fingerprint=entry.get("fingerprint"))

    def create(self, listing: Listing) -> str:
        if listing.external_id in self._listings:
            raise ReconciliationError(f"Listing {listing.external_id} already exists")
        self._sequence += 1
        internal_id = format_internal_id(self._sequence)
        now = utc_timestamp_iso()
        self._listings[listing.external_id] = {
            "internal_id": internal_id,
            "fingerprint": listing.content_fingerprint,
            "created_at": now,
            "updated_at": now,
            "last_sync": now,
            "listing": listing.to_dict(),
        }
        self._by_internal_id[internal_id] = listing.external_id
        self._dirty = True
        return internal_id

    def _entry(self, internal_id: str) -> dict:
        external_id = self._by_internal_id.get(internal_id)
        if external_id is None:
            raise ReconciliationError(f"Unknown internal id {internal_id}")
        return self._listings[external_id]

    def update(self, internal_id: str, listing: Listing) -> None:
        entry = self._entry(internal_id)
        now = utc_timestamp_iso()
        entry["fingerprint"] = listing.content_fingerprint
        entry["updated_at"] = now
        entry["last_sync"] = now
        entry["listing"] = listing.to_dict()
        self._dirty = True

    def touch(self, internal_id: str) -> None:
        self._entry(internal_id)["last_sync"] = utc_timestamp_iso()
        self._dirty = True

    def flush(self) -> None:
        if self.path is None or not self._dirty:
            return
        write_json(self.path, {"sequence": self._sequence, "listings": self._listings})
        self._dirty = False
