"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from estate_import.common.errors import ConfigError

SECTION_KEYS = {
    "source": {
        "required": {"base_url", "filename"},
        "known": {
            "base_url",
            "filename",
            "timeout_seconds",
            "connect_timeout_seconds",
            "max_retries",
            "retry_delay_seconds",
            "max_archive_bytes",
            "freshness_hours",
            "archive_format",
            "payload_extension",
            "verify_ssl",
            "chunk_size",
        },
    },
    "decoder": {
        "required": {"record_candidates"},
        "known": {
            "record_candidates",
            "detection_lookahead",
            "max_records",
            "streaming_threshold_bytes",
            "scalar_containers",
            "flags",
            "metrics",
            "attachments",
        },
    },
    "transform": {
        "required": {"fields", "categories"},
        "known": {
            "fields",
            "flag_counts",
            "categories",
            "fallback_category",
            "flag_features",
            "boolean_features",
            "metrics",
            "regions",
        },
    },
    "reconcile": {
        "required": {"batch_size", "duplicate_policy"},
        "known": {"batch_size", "duplicate_policy"},
    },
    "store": {
        "required": {"state_path"},
        "known": {"state_path"},
    },
}

REQUIRED_FIELD_KEYS = {"external_id", "title", "price_sale", "price_rent", "category_code"}
DUPLICATE_POLICIES = {"update", "skip", "force_new"}
ARCHIVE_FORMATS = {"gzip", "zip"}


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _assert_mapping(obj: object, ctx: str) -> dict:
    if not isinstance(obj, dict):
        raise ConfigError(f"{ctx} must be a mapping")
    return obj


def _assert_positive_int(value: object, ctx: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{ctx} must be a positive integer")


def _validate_collection(spec: dict, required: set[str], ctx: str) -> None:
    _assert_mapping(spec, ctx)
    _assert_required_keys(spec, required, ctx)


def validate_import_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    cfg = _assert_mapping(cfg, "import config")
    _assert_required_keys(cfg, set(SECTION_KEYS), "import config")
    _assert_no_unknown_keys(cfg, set(SECTION_KEYS) | {"logging"}, "import config", allow_unknown)

    for section, keys in SECTION_KEYS.items():
        body = _assert_mapping(cfg[section], section)
        _assert_required_keys(body, keys["required"], section)
        _assert_no_unknown_keys(body, keys["known"], section, allow_unknown)

    source = cfg["source"]
    if source.get("archive_format", "gzip") not in ARCHIVE_FORMATS:
        raise ConfigError(f"source.archive_format must be one of: {', '.join(sorted(ARCHIVE_FORMATS))}")
    for key in ("max_retries", "max_archive_bytes", "timeout_seconds"):
        if key in source:
            _assert_positive_int(source[key], f"source.{key}")

    decoder = cfg["decoder"]
    if not isinstance(decoder["record_candidates"], list) or not decoder["record_candidates"]:
        raise ConfigError("decoder.record_candidates must be a non-empty list")
    for key in ("detection_lookahead", "max_records"):
        if key in decoder:
            _assert_positive_int(decoder[key], f"decoder.{key}")
    for key in ("flags", "metrics"):
        if key in decoder:
            _validate_collection(decoder[key], {"container", "item", "value"}, f"decoder.{key}")
    if "attachments" in decoder:
        _validate_collection(decoder["attachments"], {"container", "item", "url"}, "decoder.attachments")

    transform = cfg["transform"]
    fields = _assert_mapping(transform["fields"], "transform.fields")
    _assert_required_keys(fields, REQUIRED_FIELD_KEYS, "transform.fields")
    for name, candidates in fields.items():
        if not isinstance(candidates, list) or not candidates:
            raise ConfigError(f"transform.fields.{name} must be a non-empty list")
    _assert_mapping(transform["categories"], "transform.categories")
    if "regions" in transform:
        regions = _assert_mapping(transform["regions"], "transform.regions")
        _assert_no_unknown_keys(regions, {"allow", "aliases", "allow_unresolved"}, "transform.regions", allow_unknown)

    reconcile = cfg["reconcile"]
    _assert_positive_int(reconcile["batch_size"], "reconcile.batch_size")
    if reconcile["duplicate_policy"] not in DUPLICATE_POLICIES:
        raise ConfigError(
            f"reconcile.duplicate_policy must be one of: {', '.join(sorted(DUPLICATE_POLICIES))}"
        )

    return cfg
