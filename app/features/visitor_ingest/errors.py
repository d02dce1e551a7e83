"""
Request-level failures of the visitor ingest feature.

Only conditions that stop an invocation from doing useful work are raised;
per-page, per-record and per-batch problems are reported through
BatchResult instead.
"""


class IngestError(Exception):
    """Base class; carries the HTTP status the API layer should return."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ImportValidationError(IngestError):
    """Missing or malformed input. No state has been written."""

    status_code = 400


class MissingApiKeyError(IngestError):
    status_code = 400

    def __init__(self, message: str = "No API key configured. Please add an API key in Settings first."):
        super().__init__(message)


class ImportJobNotFound(IngestError):
    status_code = 404


class PixelNotFound(IngestError):
    status_code = 404


class InvalidImportTransition(IngestError):
    status_code = 409


class UpstreamApiError(IngestError):
    """The enrichment API rejected a request that the phase cannot skip."""

    status_code = 502

    def __init__(self, message: str, upstream_status: int | None = None, body_snippet: str = ""):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.body_snippet = body_snippet


class ContactStorageError(IngestError):
    """Every contact batch of a phase was rejected by storage."""

    status_code = 500
