"""JSON logging with stable schema."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from estate_import.common.constants import JSON_LOG_FIELDS
from estate_import.common.fs import ensure_dir
from estate_import.common.time_utils import utc_timestamp_iso


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": utc_timestamp_iso(),
            "level": record.levelname,
            "run_id": getattr(record, "run_id", None),
            "stage": getattr(record, "stage", None),
            "event": getattr(record, "event", None),
            "status": getattr(record, "status", None),
            "attempt": getattr(record, "attempt", None),
            "duration_ms": getattr(record, "duration_ms", None),
            "record_index": getattr(record, "record_index", None),
            "external_id": getattr(record, "external_id", None),
            "records_in": getattr(record, "records_in", None),
            "records_out": getattr(record, "records_out", None),
            "error_code": getattr(record, "error_code", None),
            "message": record.getMessage(),
        }
        for field in JSON_LOG_FIELDS:
            payload.setdefault(field, None)
        context = getattr(record, "context", None)
        if context:
            payload["context"] = context
        return json.dumps(payload, ensure_ascii=False, default=str)


def build_logger(run_id: str, data_dir: Path, level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger(f"estate_import.{run_id}")
    logger.setLevel(level.upper())
    logger.handlers.clear()
    logger.propagate = False

    stream = logging.StreamHandler()
    stream.setFormatter(JsonLineFormatter())
    logger.addHandler(stream)

    log_path = data_dir / "run_meta" / f"{run_id}.log.jsonl"
    ensure_dir(log_path.parent)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(JsonLineFormatter())
    logger.addHandler(file_handler)

    return logger


def null_logger() -> logging.Logger:
    logger = logging.getLogger("estate_import.null")
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    logger.propagate = False
    return logger


_KNOWN_FIELDS = frozenset(JSON_LOG_FIELDS) - {"timestamp", "message"}


def log_event(logger: logging.Logger, message: str, level: int = logging.INFO, **event_fields: Any) -> None:
    extra = {key: value for key, value in event_fields.items() if key in _KNOWN_FIELDS}
    context = {key: value for key, value in event_fields.items() if key not in _KNOWN_FIELDS}
    if context:
        extra["context"] = context
    logger.log(level, message, extra=extra)
