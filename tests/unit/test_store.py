from pathlib import Path

import pytest

from estate_import.common.errors import ReconciliationError
from estate_import.common.fs import read_json
from estate_import.pipeline.store import StateFileStore


def test_create_lookup_and_persist(tmp_path: Path, make_listing):
    path = tmp_path / "state" / "destination.json"
    store = StateFileStore(path)
    internal_id = store.create(make_listing("1001"))
    store.flush()

    reloaded = StateFileStore(path)
    ref = reloaded.lookup("1001")

    assert ref.internal_id == internal_id
    assert ref.fingerprint == make_listing("1001").content_fingerprint
    assert reloaded.get("1001")["listing"]["category"] == "apartment"
    assert read_json(path)["sequence"] == 1


def test_sequence_continues_after_reload(tmp_path: Path, make_listing):
    path = tmp_path / "destination.json"
    store = StateFileStore(path)
    store.create(make_listing("1"))
    store.flush()

    assert StateFileStore(path).create(make_listing("2")) == "lst-0000002"


def test_touch_only_refreshes_sync_timestamp(make_listing):
    store = StateFileStore(None)
    internal_id = store.create(make_listing("1001"))
    before = dict(store.get("1001"))

    store.touch(internal_id)
    after = store.get("1001")

    assert after["fingerprint"] == before["fingerprint"]
    assert after["updated_at"] == before["updated_at"]
    assert after["listing"] == before["listing"]


def test_duplicate_create_and_unknown_ids_raise(make_listing):
    store = StateFileStore(None)
    store.create(make_listing("1001"))

    with pytest.raises(ReconciliationError):
        store.create(make_listing("1001"))
    with pytest.raises(ReconciliationError):
        store.update("lst-9999999", make_listing("1001"))
    with pytest.raises(ReconciliationError):
        store.touch("lst-9999999")


def test_in_memory_store_flush_is_noop(tmp_path: Path, make_listing):
    store = StateFileStore(None)
    store.create(make_listing("1"))
    store.flush()
    assert list(tmp_path.iterdir()) == []
