from __future__ import annotations


class IngestionError(Exception):
    """Base class for errors raised by the ingestion pipeline."""

    kind = "IngestionError"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind


class InvalidFormat(IngestionError):
    """Raised when an upload's extension is not on the allow-list."""

    kind = "InvalidFormat"


class PayloadTooLarge(IngestionError):
    """Raised when an upload exceeds the configured size limit."""

    kind = "PayloadTooLarge"


class UploadFailed(IngestionError):
    """Raised when the translation service could not accept the file."""

    kind = "UploadFailed"


class TranslationError(IngestionError):
    kind = "TranslationError"


class PollTimeout(IngestionError):
    kind = "PollTimeout"


class ExtractionDataError(IngestionError):
    """Raised when a result payload cannot be decoded at all."""

    kind = "ExtractionDataError"


class ResultFetchError(IngestionError):
    """Raised when the result payload could not be downloaded."""

    kind = "ResultFetchError"


class ReportGenerationError(IngestionError):
    """Recorded when a completed job's elements could not be turned into a report."""

    kind = "ReportGenerationError"


class StatusCheckFailed(IngestionError):
    """Raised or recorded when status checks keep failing at the transport level."""

    kind = "StatusCheckFailed"


class ReportNotReady(IngestionError):
    kind = "ReportNotReady"


class JobNotFound(IngestionError):
    kind = "JobNotFound"


class InvalidTransition(IngestionError):
    """Raised when a status change is not an edge of the job state machine."""

    kind = "InvalidTransition"


__all__ = [
    "ExtractionDataError",
    "IngestionError",
    "InvalidFormat",
    "InvalidTransition",
    "JobNotFound",
    "PayloadTooLarge",
    "PollTimeout",
    "ReportGenerationError",
    "ReportNotReady",
    "ResultFetchError",
    "StatusCheckFailed",
    "TranslationError",
    "UploadFailed",
]
