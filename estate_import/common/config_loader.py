"""Configuration loading and validation."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from estate_import.common.constants import RECORD_ELEMENT_CANDIDATES
from estate_import.common.errors import ConfigError
from estate_import.common.fs import read_yaml
from estate_import.common.models import DuplicatePolicy, PropertyCategory
from estate_import.common.schema import validate_import_config

CONFIG_FILENAME = "import.yml"

DEFAULT_FIELDS = {
    "external_id": ("id", "id_immobile"),
    "title": ("titolo", "title", "abstract"),
    "description": ("descrizione", "description", "testo"),
    "price_sale": ("prezzo_vendita", "price"),
    "price_rent": ("prezzo_affitto", "price_rent"),
    "area_sqm": ("mq", "superficie_commerciale"),
    "room_count": ("numero_camere", "locali"),
    "bathroom_count": ("numero_bagni", "bagni"),
    "region": ("provincia", "province", "state", "region"),
    "locality": ("comune", "citta"),
    "category_code": ("categorie_id", "categoria"),
    "address": ("indirizzo",),
    "latitude": ("latitude", "latitudine"),
    "longitude": ("longitude", "longitudine"),
}

DEFAULT_CATEGORIES = {
    1: PropertyCategory.HOUSE,
    2: PropertyCategory.HOUSE,
    3: PropertyCategory.HOUSE,
    4: PropertyCategory.HOUSE,
    8: PropertyCategory.GARAGE,
    11: PropertyCategory.APARTMENT,
    12: PropertyCategory.PENTHOUSE,
    13: PropertyCategory.HOUSE,
    14: PropertyCategory.COMMERCIAL,
    17: PropertyCategory.OFFICE,
    18: PropertyCategory.VILLA,
    19: PropertyCategory.LAND,
    21: PropertyCategory.GARAGE,
    23: PropertyCategory.APARTMENT,
    26: PropertyCategory.COMMERCIAL,
}


@dataclass(frozen=True)
class SourceConfig:
    base_url: str
    filename: str
    timeout_seconds: float = 300.0
    connect_timeout_seconds: float = 20.0
    max_retries: int = 3
    retry_delay_seconds: float = 5.0
    max_archive_bytes: int = 50 * 1024 * 1024
    freshness_hours: float = 12.0
    archive_format: str = "gzip"
    payload_extension: str = ".xml"
    verify_ssl: bool = True
    chunk_size: int = 128 * 1024

    @property
    def url(self) -> str:
        return self.base_url.rstrip("/") + "/" + self.filename


@dataclass(frozen=True)
class CollectionSpec:
    container: str
    item: str
    value: str


@dataclass(frozen=True)
class AttachmentSpec:
    container: str = "file_allegati"
    item: str = "allegato"
    url: tuple[str, ...] = ("file_path", "url")


@dataclass(frozen=True)
class DecoderConfig:
    record_candidates: tuple[str, ...] = RECORD_ELEMENT_CANDIDATES
    detection_lookahead: int = 2000
    max_records: int = 50_000
    streaming_threshold_bytes: int = 50 * 1024 * 1024
    scalar_containers: tuple[str, ...] = ("info",)
    flags: CollectionSpec = CollectionSpec("info_inserite", "info", "valore_assegnato")
    metrics: CollectionSpec = CollectionSpec("dati_inseriti", "dati", "valore_assegnato")
    attachments: AttachmentSpec = AttachmentSpec()


@dataclass(frozen=True)
class TransformConfig:
    fields: dict[str, tuple[str, ...]] = field(default_factory=lambda: dict(DEFAULT_FIELDS))
    categories: dict[int, PropertyCategory] = field(default_factory=lambda: dict(DEFAULT_CATEGORIES))
    fallback_category: PropertyCategory = PropertyCategory.PROPERTY
    flag_counts: dict[str, int] = field(default_factory=lambda: {"bathroom_count": 1, "room_count": 2})
    flag_features: dict[int, str] = field(default_factory=dict)
    boolean_features: dict[str, str] = field(default_factory=dict)
    metrics: dict[int, str] = field(default_factory=dict)
    allowed_regions: frozenset[str] = frozenset()
    region_aliases: dict[str, tuple[str, ...]] = field(default_factory=dict)
    allow_unresolved_region: bool = False

    def candidates(self, name: str) -> tuple[str, ...]:
        return self.fields.get(name, ())


@dataclass(frozen=True)
class ReconcileConfig:
    batch_size: int = 50
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.UPDATE


@dataclass(frozen=True)
class StoreConfig:
    state_path: str = "state/destination.json"


@dataclass(frozen=True)
class ImportConfig:
    source: SourceConfig
    decoder: DecoderConfig = DecoderConfig()
    transform: TransformConfig = field(default_factory=TransformConfig)
    reconcile: ReconcileConfig = ReconcileConfig()
    store: StoreConfig = StoreConfig()
    log_level: str = "INFO"


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _load_yaml_with_overlay(path: Path, overlay_path: Path | None) -> dict:
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    base = read_yaml(path) or {}
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path) or {}
    return _deep_merge(base, overlay)


def _int_keyed(mapping: dict | None, ctx: str) -> dict[int, Any]:
    out: dict[int, Any] = {}
    for key, value in (mapping or {}).items():
        try:
            out[int(key)] = value
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{ctx} keys must be integers, got {key!r}") from exc
    return out


def _category(value: object, ctx: str) -> PropertyCategory:
    try:
        return PropertyCategory(str(value))
    except ValueError as exc:
        allowed = ", ".join(member.value for member in PropertyCategory)
        raise ConfigError(f"{ctx} must be one of: {allowed} (got {value!r})") from exc


def _collection(raw: dict | None, default: CollectionSpec) -> CollectionSpec:
    if not raw:
        return default
    return CollectionSpec(container=raw["container"], item=raw["item"], value=raw["value"])


def _attachment_spec(raw: dict | None) -> AttachmentSpec:
    if not raw:
        return AttachmentSpec()
    url = raw["url"]
    urls = (url,) if isinstance(url, str) else tuple(url)
    return AttachmentSpec(container=raw["container"], item=raw["item"], url=urls)


def build_import_config(cfg: dict) -> ImportConfig:
    source_raw = cfg["source"]
    source = SourceConfig(**source_raw)

    decoder_raw = cfg["decoder"]
    decoder = DecoderConfig(
        record_candidates=tuple(decoder_raw["record_candidates"]),
        detection_lookahead=int(decoder_raw.get("detection_lookahead", 2000)),
        max_records=int(decoder_raw.get("max_records", 50_000)),
        streaming_threshold_bytes=int(decoder_raw.get("streaming_threshold_bytes", 50 * 1024 * 1024)),
        scalar_containers=tuple(decoder_raw.get("scalar_containers", DecoderConfig.scalar_containers) or ()),
        flags=_collection(decoder_raw.get("flags"), DecoderConfig.flags),
        metrics=_collection(decoder_raw.get("metrics"), DecoderConfig.metrics),
        attachments=_attachment_spec(decoder_raw.get("attachments")),
    )

    transform_raw = cfg["transform"]
    regions = transform_raw.get("regions") or {}
    transform = TransformConfig(
        fields={name: tuple(str(c) for c in candidates) for name, candidates in transform_raw["fields"].items()},
        categories={
            code: _category(value, f"transform.categories.{code}")
            for code, value in _int_keyed(transform_raw["categories"], "transform.categories").items()
        },
        fallback_category=_category(transform_raw.get("fallback_category", "property"), "transform.fallback_category"),
        flag_counts={name: int(flag_id) for name, flag_id in (transform_raw.get("flag_counts") or {}).items()},
        flag_features={k: str(v) for k, v in _int_keyed(transform_raw.get("flag_features"), "transform.flag_features").items()},
        boolean_features={str(k): str(v) for k, v in (transform_raw.get("boolean_features") or {}).items()},
        metrics={k: str(v) for k, v in _int_keyed(transform_raw.get("metrics"), "transform.metrics").items()},
        allowed_regions=frozenset(str(code).upper() for code in regions.get("allow") or ()),
        region_aliases={
            str(code).upper(): tuple(str(alias) for alias in aliases)
            for code, aliases in (regions.get("aliases") or {}).items()
        },
        allow_unresolved_region=bool(regions.get("allow_unresolved", False)),
    )

    reconcile_raw = cfg["reconcile"]
    reconcile = ReconcileConfig(
        batch_size=int(reconcile_raw["batch_size"]),
        duplicate_policy=DuplicatePolicy(reconcile_raw["duplicate_policy"]),
    )
    store = StoreConfig(state_path=str(cfg["store"]["state_path"]))
    log_level = str((cfg.get("logging") or {}).get("level", "INFO"))

    return ImportConfig(
        source=source,
        decoder=decoder,
        transform=transform,
        reconcile=reconcile,
        store=store,
        log_level=log_level,
    )


def load_import_config(
    config_dir: Path,
    *,
    allow_unknown: bool = False,
    overlay_config_dir: Path | None = None,
) -> ImportConfig:
    overlay_path = (overlay_config_dir / CONFIG_FILENAME) if overlay_config_dir is not None else None
    raw = _load_yaml_with_overlay(config_dir / CONFIG_FILENAME, overlay_path)
    return build_import_config(validate_import_config(raw, allow_unknown=allow_unknown))
