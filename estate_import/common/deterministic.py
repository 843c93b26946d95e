"""Helpers for deterministic ordering and serialisation."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Callable, Iterable, TypeVar

from estate_import.common.coerce import Number, collapse_whitespace

T = TypeVar("T")

FINGERPRINT_FIELDS = ("external_id", "title", "price_sale", "price_rent", "description")


def stable_sorted(items: Iterable[T], key: Callable[[T], object]) -> list[T]:
    return sorted(items, key=key)


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def _canonical_number(value: Number | None) -> Number | None:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def compute_fingerprint(
    external_id: str,
    title: str | None,
    price_sale: Number | None,
    price_rent: Number | None,
    description: str | None,
) -> str:
    """SHA-256 over the typed content fields; import metadata never enters it."""
    values = [
        external_id,
        collapse_whitespace(title),
        _canonical_number(price_sale),
        _canonical_number(price_rent),
        collapse_whitespace(description),
    ]
    digest = hashlib.sha256(canonical_json(dict(zip(FINGERPRINT_FIELDS, values))).encode("utf-8"))
    return digest.hexdigest()
