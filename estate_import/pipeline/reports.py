"""Run report persistence."""

from __future__ import annotations

from pathlib import Path

from estate_import.common.fs import read_json, write_json


def report_path(data_dir: Path, run_id: str) -> Path:
    return data_dir / "reports" / f"{run_id}.json"


def write_run_report(data_dir: Path, report) -> Path:
    path = report_path(data_dir, report.run_id)
    write_json(path, report.to_dict())
    return path


def read_run_report(data_dir: Path, run_id: str) -> dict:
    return read_json(report_path(data_dir, run_id))
