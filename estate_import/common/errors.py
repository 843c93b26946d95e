"""Domain errors and failure typing."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for import failures."""

    error_code = "PIPELINE_ERROR"


class ConfigError(PipelineError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class StageError(PipelineError):
    """Raised for stage failures that abort the run."""

    error_code = "STAGE_ERROR"


class FetchError(StageError):
    error_code = "FETCH_ERROR"


class CredentialsMissing(FetchError):
    error_code = "FETCH_CREDENTIALS_MISSING"


class FetchTransportError(FetchError):
    """Network failure, non-2xx status or a truncated body. Retried."""

    error_code = "FETCH_TRANSPORT"


class SizeExceeded(FetchError):
    error_code = "FETCH_SIZE_EXCEEDED"


class InvalidArtifact(FetchError):
    error_code = "FETCH_INVALID_ARTIFACT"


class NoPayloadFound(FetchError):
    error_code = "FETCH_NO_PAYLOAD"


class DecodeError(StageError):
    error_code = "DECODE_ERROR"


class MalformedXml(DecodeError):
    error_code = "DECODE_MALFORMED"

    def __init__(self, message: str, position: tuple[int, int] | None = None) -> None:
        super().__init__(message)
        self.position = position


class NoRecordElementFound(DecodeError):
    error_code = "DECODE_NO_RECORD_ELEMENT"


class DeadlineExceeded(StageError):
    error_code = "DEADLINE_EXCEEDED"


class ValidationError(PipelineError):
    """Record-local: a raw record cannot become a listing."""

    error_code = "VALIDATION_ERROR"


class MissingField(ValidationError):
    error_code = "VALIDATION_MISSING_FIELD"

    def __init__(self, field: str) -> None:
        super().__init__(f"Missing required field: {field}")
        self.field = field


class InvalidValue(ValidationError):
    error_code = "VALIDATION_INVALID_VALUE"


class ReconciliationError(PipelineError):
    """Record-local: the destination store rejected an operation."""

    error_code = "RECONCILIATION_ERROR"


class LockHeld(PipelineError):
    error_code = "LOCK_HELD"
