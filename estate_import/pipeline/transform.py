"""Raw record -> validated Listing."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from estate_import.common.coerce import collapse_whitespace, parse_bool, parse_float, parse_int, parse_number
from estate_import.common.deterministic import compute_fingerprint
from estate_import.common.errors import InvalidValue, MissingField, ValidationError
from estate_import.common.logging import log_event, null_logger
from estate_import.common.models import Listing, RawRecord

_PAREN_CODE_RE = re.compile(r"\(([A-Za-z]{2})\)")


@dataclass(frozen=True)
class TransformResult:
    record_index: int
    external_id: str | None = None
    listing: Listing | None = None
    error: ValidationError | None = None

    @property
    def ok(self) -> bool:
        return self.listing is not None

    @property
    def filtered(self) -> bool:
        return self.listing is not None and self.listing.filtered


def _as_int(value) -> int | None:
    if value is None:
        return None
    return int(round(value))


def _listing_type(price_sale, price_rent) -> str:
    if price_sale is not None and price_sale > 0:
        return "sale"
    if price_rent is not None and price_rent > 0:
        return "rent"
    return "unknown"


class RecordTransformer:
    """Per-record coercion, validation, mapping and fingerprinting.

    Holds only the immutable lookup tables from ``TransformConfig``; no state
    is carried from one record to the next.
    """

    def __init__(self, transform_config, logger: logging.Logger | None = None) -> None:
        self.config = transform_config
        self.logger = logger or null_logger()
        self._consumed = frozenset(name for names in transform_config.fields.values() for name in names) | frozenset(
            transform_config.boolean_features
        )
        self._aliases = {
            alias.casefold(): code
            for code, aliases in transform_config.region_aliases.items()
            for alias in aliases
        }

    def transform(self, raw: RawRecord, record_index: int = 0) -> TransformResult:
        try:
            listing = self._build(raw)
        except ValidationError as exc:
            return self._rejected(raw, record_index, exc)
        except Exception as exc:
            return self._rejected(raw, record_index, InvalidValue(f"Unreadable record: {exc}"))

        if listing.filtered:
            log_event(
                self.logger,
                f"Listing outside allowed regions: {listing.region}",
                level=logging.DEBUG,
                stage="transform",
                event="RECORD_FILTERED",
                status="filtered",
                record_index=record_index,
                external_id=listing.external_id,
            )
        return TransformResult(record_index=record_index, external_id=listing.external_id, listing=listing)

    def _rejected(self, raw: RawRecord, record_index: int, error: ValidationError) -> TransformResult:
        external_id = self._lookup(raw, "external_id")
        log_event(
            self.logger,
            str(error),
            level=logging.WARNING,
            stage="transform",
            event="RECORD_INVALID",
            status="invalid",
            record_index=record_index,
            external_id=external_id,
            error_code=error.error_code,
        )
        return TransformResult(record_index=record_index, external_id=external_id, error=error)

    def _lookup(self, raw: RawRecord, name: str) -> str | None:
        for candidate in self.config.candidates(name):
            value = raw.scalar_fields.get(candidate)
            if value is not None and value.strip():
                return value.strip()
        return None

    def _price(self, raw: RawRecord, name: str):
        value = parse_number(self._lookup(raw, name))
        if value is not None and value < 0:
            raise InvalidValue(f"Negative {name}: {value}")
        return value

    def _count(self, raw: RawRecord, name: str) -> int | None:
        value = _as_int(parse_number(self._lookup(raw, name)))
        if value is not None:
            return value
        flag_id = self.config.flag_counts.get(name)
        if flag_id is None or flag_id not in raw.flags:
            return None
        return raw.flags[flag_id]

    def _resolve_region(self, raw: RawRecord, locality: str | None, address: str | None) -> str | None:
        value = self._lookup(raw, "region")
        if value is not None:
            return self._aliases.get(value.casefold(), value.upper())

        for text in (locality, address):
            if not text:
                continue
            match = _PAREN_CODE_RE.search(text)
            if match:
                return match.group(1).upper()
            folded = text.casefold()
            for alias, code in self._aliases.items():
                if re.search(rf"\b{re.escape(alias)}\b", folded):
                    return code
        return None

    def _is_filtered(self, region: str | None) -> bool:
        allowed = self.config.allowed_regions
        if not allowed:
            return False
        if region is None:
            return not self.config.allow_unresolved_region
        return region not in allowed

    def _build(self, raw: RawRecord) -> Listing:
        external_id = self._lookup(raw, "external_id")
        if external_id is None:
            raise MissingField("external_id")
        title = collapse_whitespace(self._lookup(raw, "title"))
        if title is None:
            raise MissingField("title")

        price_sale = self._price(raw, "price_sale")
        price_rent = self._price(raw, "price_rent")
        if price_sale is None and price_rent is None:
            raise MissingField("price_sale/price_rent")

        category_code = parse_int(self._lookup(raw, "category_code"))
        if category_code is None:
            raise MissingField("category_code")
        category = self.config.categories.get(category_code, self.config.fallback_category)

        description = collapse_whitespace(self._lookup(raw, "description"))
        locality = collapse_whitespace(self._lookup(raw, "locality"))
        address = collapse_whitespace(self._lookup(raw, "address"))
        region = self._resolve_region(raw, locality, address)

        latitude = parse_float(self._lookup(raw, "latitude"))
        if latitude is not None and not -90.0 <= latitude <= 90.0:
            latitude = None
        longitude = parse_float(self._lookup(raw, "longitude"))
        if longitude is not None and not -180.0 <= longitude <= 180.0:
            longitude = None

        features = {tag for flag_id, tag in self.config.flag_features.items() if raw.flags.get(flag_id, 0) > 0}
        for field_name, tag in self.config.boolean_features.items():
            if parse_bool(raw.scalar_fields.get(field_name)) is True:
                features.add(tag)

        derived = {
            name: raw.metrics[metric_id]
            for metric_id, name in self.config.metrics.items()
            if metric_id in raw.metrics
        }
        extra = {name: value for name, value in raw.scalar_fields.items() if name not in self._consumed}

        return Listing(
            external_id=external_id,
            title=title,
            description=description,
            price_sale=price_sale,
            price_rent=price_rent,
            area_sqm=_as_int(parse_number(self._lookup(raw, "area_sqm"))),
            room_count=self._count(raw, "room_count"),
            bathroom_count=self._count(raw, "bathroom_count"),
            region=region,
            locality=locality,
            category_code=category_code,
            category=category,
            features=frozenset(features),
            derived_metrics=derived,
            attachments=tuple(raw.attachments),
            content_fingerprint=compute_fingerprint(external_id, title, price_sale, price_rent, description),
            listing_type=_listing_type(price_sale, price_rent),
            address=address,
            latitude=latitude,
            longitude=longitude,
            filtered=self._is_filtered(region),
            extra=extra,
        )
