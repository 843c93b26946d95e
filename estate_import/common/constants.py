"""Application constants."""

USER_AGENT = "estate-import/1.0 (+listing-feed-sync)"
COMMANDS = (
    "fetch",
    "inspect",
    "import",
    "cleanup",
)
EXIT_SUCCESS = 0
EXIT_PARTIAL = 10
EXIT_HARD_FAIL = 20
JSON_LOG_FIELDS = (
    "timestamp",
    "run_id",
    "stage",
    "event",
    "status",
    "attempt",
    "duration_ms",
    "record_index",
    "external_id",
    "records_in",
    "records_out",
    "error_code",
    "message",
)
RECORD_ELEMENT_CANDIDATES = ("annuncio", "immobile", "property", "listing", "item", "record")
GZIP_MAGIC = b"\x1f\x8b"
ZIP_MAGIC = b"PK\x03\x04"
ARCHIVE_MAGIC = {
    "gzip": (GZIP_MAGIC,),
    "zip": (ZIP_MAGIC,),
}
CACHED_ARCHIVE_PREFIX = "latest_"
CREDENTIALS_ENV = ("ESTATE_IMPORT_USERNAME", "ESTATE_IMPORT_PASSWORD")
