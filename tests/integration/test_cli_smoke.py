import json
import os
import time
from pathlib import Path

import pytest
import requests

from estate_import.cli import main, parse_args, run_command
from estate_import.common.fs import read_json
from estate_import.pipeline.reports import read_run_report

FEED = "tests/fixtures/feeds/annunci.xml"


def _args(command: str, data_dir: Path, *extra: str):
    return parse_args([command, "--config-dir", "config", "--data-dir", str(data_dir), "--run-id", "run-test", *extra])


@pytest.mark.integration
def test_cli_import_writes_report_and_state(tmp_path: Path):
    data_dir = tmp_path / "data"

    exit_code = run_command(_args("import", data_dir, "--input", FEED))

    # one record in the feed has no id, so the run is partial
    assert exit_code == 10
    report = read_run_report(data_dir, "run-test")
    assert report["status"] == "partial"
    assert report["counts"]["created"] == 2
    assert report["counts"]["invalid"] == 1
    assert len(read_json(data_dir / "state" / "destination.json")["listings"]) == 2
    assert (data_dir / "run_meta" / "run-test.log.jsonl").exists()
    assert not (data_dir / "state" / "import.lock").exists()


@pytest.mark.integration
def test_cli_import_clean_feed_succeeds_and_rerun_is_idempotent(tmp_path: Path):
    data_dir = tmp_path / "data"
    feed = tmp_path / "feed.xml"
    feed.write_text(
        "<dataset><annuncio><info><id>9</id><titolo>Casa</titolo><prezzo_vendita>1</prezzo_vendita>"
        "<categorie_id>1</categorie_id><provincia>TN</provincia></info></annuncio></dataset>",
        encoding="utf-8",
    )

    assert run_command(_args("import", data_dir, "--input", str(feed))) == 0
    assert run_command(_args("import", data_dir, "--input", str(feed))) == 0
    assert read_run_report(data_dir, "run-test")["counts"]["skipped_unchanged"] == 1


@pytest.mark.integration
def test_cli_import_refuses_concurrent_run(tmp_path: Path):
    data_dir = tmp_path / "data"
    lock = data_dir / "state" / "import.lock"
    lock.parent.mkdir(parents=True)
    lock.write_text("4242", encoding="ascii")

    assert run_command(_args("import", data_dir, "--input", FEED)) == 20
    assert lock.exists()
    assert not (data_dir / "state" / "destination.json").exists()


@pytest.mark.integration
def test_cli_import_malformed_feed_is_hard_failure(tmp_path: Path):
    data_dir = tmp_path / "data"

    assert run_command(_args("import", data_dir, "--input", "tests/fixtures/feeds/malformed.xml")) == 20
    assert read_run_report(data_dir, "run-test")["fatal_error"]["error_code"] == "DECODE_MALFORMED"


@pytest.mark.integration
def test_cli_inspect_prints_structure(tmp_path: Path, capsys):
    exit_code = run_command(_args("inspect", tmp_path, "--input", FEED))

    summary = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert summary["record_element"] == "annuncio"
    assert summary["sample_record"]["scalar_fields"]["id"] == "1001"


@pytest.mark.integration
def test_cli_inspect_without_cached_archive_fails(tmp_path: Path):
    assert run_command(_args("inspect", tmp_path)) == 20


@pytest.mark.integration
def test_cli_cleanup_removes_stale_cache_files(tmp_path: Path):
    cache = tmp_path / "cache"
    cache.mkdir()
    stale = cache / "latest_export.tar.gz"
    fresh = cache / "other.tar.gz"
    stale.write_bytes(b"old")
    fresh.write_bytes(b"new")
    two_days_ago = time.time() - 48 * 3600
    os.utime(stale, (two_days_ago, two_days_ago))

    assert run_command(_args("cleanup", tmp_path)) == 0
    assert not stale.exists()
    assert fresh.exists()


@pytest.mark.integration
def test_cli_fetch_test_connection(monkeypatch, tmp_path: Path, capsys):
    class FakeResponse:
        status_code = 404
        headers: dict = {}

        def close(self):
            pass

    monkeypatch.setenv("ESTATE_IMPORT_USERNAME", "agent")
    monkeypatch.setenv("ESTATE_IMPORT_PASSWORD", "secret")
    monkeypatch.setattr(requests.Session, "request", lambda self, **kwargs: FakeResponse())

    exit_code = run_command(_args("fetch", tmp_path, "--test-connection"))

    assert exit_code == 0
    assert json.loads(capsys.readouterr().out)["reachable"] is True


@pytest.mark.integration
def test_cli_fetch_without_credentials_fails(monkeypatch, tmp_path: Path):
    monkeypatch.delenv("ESTATE_IMPORT_USERNAME", raising=False)
    monkeypatch.delenv("ESTATE_IMPORT_PASSWORD", raising=False)

    assert main(["fetch", "--config-dir", "config", "--data-dir", str(tmp_path)]) == 20
