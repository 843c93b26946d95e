"""CLI entrypoint for the listing feed importer."""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

from estate_import.common.config_loader import ImportConfig, load_import_config
from estate_import.common.constants import COMMANDS, CREDENTIALS_ENV, EXIT_HARD_FAIL, EXIT_PARTIAL, EXIT_SUCCESS
from estate_import.common.errors import PipelineError
from estate_import.common.fs import run_lock
from estate_import.common.ids import generate_run_id
from estate_import.common.logging import build_logger, log_event
from estate_import.common.models import Credentials
from estate_import.common.time_utils import deadline_after
from estate_import.fetch.archive import cleanup_stale_files, extract_payload
from estate_import.fetch.downloader import Fetcher
from estate_import.pipeline.reports import write_run_report
from estate_import.pipeline.runner import run_import
from estate_import.pipeline.store import StateFileStore
from estate_import.pipeline.structure import analyze_structure


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("--run-id", default=None)
    parser.add_argument("--config-dir", default="./config")
    parser.add_argument("--overlay-config-dir", default=None)
    parser.add_argument("--data-dir", default="./data")
    parser.add_argument("--log-level", default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--input", default=None, help="Local feed file (.xml or archive) instead of downloading")
    parser.add_argument("--force-refresh", action="store_true")
    parser.add_argument("--deadline-seconds", type=float, default=None)
    parser.add_argument("--max-age-hours", type=float, default=24.0)
    parser.add_argument("--max-elements", type=int, default=5000)
    parser.add_argument("--test-connection", action="store_true")
    return parser.parse_args(argv)


def resolve_credentials(environ=None) -> Credentials | None:
    environ = os.environ if environ is None else environ
    user_var, password_var = CREDENTIALS_ENV
    username = environ.get(user_var)
    password = environ.get(password_var)
    if not username or not password:
        return None
    return Credentials(username=username, password=password)


def _cache_dir(data_dir: Path) -> Path:
    return data_dir / "cache"


def _cmd_fetch(args: argparse.Namespace, config: ImportConfig, data_dir: Path, logger) -> int:
    credentials = resolve_credentials()
    fetcher = Fetcher(config.source, _cache_dir(data_dir), logger=logger)
    try:
        if args.test_connection:
            reachable = fetcher.test_connection(credentials)
            print(json.dumps({"url": config.source.base_url, "reachable": reachable}))
            return EXIT_SUCCESS if reachable else EXIT_HARD_FAIL
        result = fetcher.fetch(credentials, force_refresh=args.force_refresh)
    finally:
        fetcher.close()
    payload = extract_payload(result.path, _cache_dir(data_dir) / "extracted", extension=config.source.payload_extension)
    print(json.dumps({**result.to_dict(), "payload": str(payload)}, sort_keys=True))
    return EXIT_SUCCESS


def _cmd_inspect(args: argparse.Namespace, config: ImportConfig, data_dir: Path, logger) -> int:
    if args.input:
        path = Path(args.input)
        if not path.name.lower().endswith(config.source.payload_extension):
            path = extract_payload(path, _cache_dir(data_dir) / "extracted", extension=config.source.payload_extension)
    else:
        cached = Fetcher(config.source, _cache_dir(data_dir), logger=logger).cached_path
        path = extract_payload(cached, _cache_dir(data_dir) / "extracted", extension=config.source.payload_extension)
    summary = analyze_structure(
        path,
        candidates=config.decoder.record_candidates,
        max_elements=args.max_elements,
        decoder_config=config.decoder,
    )
    print(json.dumps(summary, indent=2, ensure_ascii=False))
    return EXIT_SUCCESS


def _cmd_import(args: argparse.Namespace, config: ImportConfig, data_dir: Path, run_id: str, logger) -> int:
    with run_lock(data_dir / "state" / "import.lock"):
        store = StateFileStore(data_dir / config.store.state_path)
        report = run_import(
            config,
            store,
            credentials=resolve_credentials(),
            force_refresh=args.force_refresh,
            input_path=Path(args.input) if args.input else None,
            deadline=deadline_after(args.deadline_seconds),
            logger=logger,
            run_id=run_id,
            work_dir=_cache_dir(data_dir),
        )
    write_run_report(data_dir, report)
    if report.status == "failed":
        return EXIT_HARD_FAIL
    if report.status == "partial":
        return EXIT_PARTIAL
    return EXIT_SUCCESS


def _cmd_cleanup(args: argparse.Namespace, data_dir: Path, logger) -> int:
    removed = []
    for directory in (_cache_dir(data_dir), _cache_dir(data_dir) / "extracted"):
        removed.extend(cleanup_stale_files(directory, max_age_hours=args.max_age_hours))
    log_event(logger, f"Removed {len(removed)} stale files", stage="cleanup", event="CLEANUP_END", status="ok")
    return EXIT_SUCCESS


def run_command(args: argparse.Namespace) -> int:
    run_id = args.run_id or generate_run_id()
    config_dir = Path(args.config_dir)
    overlay_config_dir = Path(args.overlay_config_dir) if args.overlay_config_dir else None
    data_dir = Path(args.data_dir)

    config = load_import_config(config_dir, overlay_config_dir=overlay_config_dir)
    logger = build_logger(run_id, data_dir=data_dir, level=args.log_level or config.log_level)

    try:
        if args.command == "fetch":
            return _cmd_fetch(args, config, data_dir, logger)
        if args.command == "inspect":
            return _cmd_inspect(args, config, data_dir, logger)
        if args.command == "import":
            return _cmd_import(args, config, data_dir, run_id, logger)
        return _cmd_cleanup(args, data_dir, logger)
    except PipelineError as exc:
        log_event(
            logger,
            f"{args.command} failed: {exc}",
            run_id=run_id,
            stage=args.command,
            event="COMMAND_FAIL",
            status="error",
            error_code=exc.error_code,
        )
        return EXIT_HARD_FAIL


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    try:
        return run_command(args)
    except PipelineError:
        return EXIT_HARD_FAIL
    except Exception:
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())
