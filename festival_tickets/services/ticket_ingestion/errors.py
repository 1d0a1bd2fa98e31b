"""
Error types raised by the ticket ingestion pipeline.

Every per-page error is caught at the page boundary by the pipeline and turned
into a failed page result; the read side lets FormatError propagate.
"""

from enum import Enum


class ErrorCode(Enum):
    """Ingestion error codes."""

    RENDER_FAILED = "RENDER_FAILED"
    QR_NOT_FOUND = "QR_NOT_FOUND"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    INVALID_FORMAT = "INVALID_FORMAT"
    STORAGE_FAILED = "STORAGE_FAILED"


class ExtractionFailure(Enum):
    """Why a vision extraction failed."""

    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"
    INVALID_RESPONSE = "invalid_response"
    MISSING_FIELDS = "missing_fields"
    SERVICE_ERROR = "service_error"


QUOTA_EXCEEDED_MESSAGE = "OpenAI API quota exceeded. Please check your billing and plan details."
RATE_LIMITED_MESSAGE = "OpenAI API rate limit exceeded. Please try again later."
QR_NOT_FOUND_MESSAGE = "Could not extract QR code"


class TicketIngestionError(Exception):
    """Base error with code and user-safe message."""

    code = ErrorCode.EXTRACTION_FAILED

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class RenderError(TicketIngestionError):
    """Raised when a PDF page cannot be rasterized or a page image cannot be decoded."""

    code = ErrorCode.RENDER_FAILED


class QRNotFoundError(TicketIngestionError):
    """Raised by the pipeline when neither the full page nor any region holds a QR code."""

    code = ErrorCode.QR_NOT_FOUND

    def __init__(self, message: str = QR_NOT_FOUND_MESSAGE) -> None:
        super().__init__(message)


class ExtractionError(TicketIngestionError):
    """Raised when the vision model call fails or returns unusable data."""

    code = ErrorCode.EXTRACTION_FAILED

    def __init__(self, message: str, reason: ExtractionFailure = ExtractionFailure.SERVICE_ERROR) -> None:
        super().__init__(message)
        self.reason = reason

    @classmethod
    def quota_exceeded(cls) -> "ExtractionError":
        return cls(QUOTA_EXCEEDED_MESSAGE, ExtractionFailure.QUOTA_EXCEEDED)

    @classmethod
    def rate_limited(cls) -> "ExtractionError":
        return cls(RATE_LIMITED_MESSAGE, ExtractionFailure.RATE_LIMITED)


class FormatError(TicketIngestionError):
    """Raised when a ticket date or start time does not match the canonical format."""

    code = ErrorCode.INVALID_FORMAT


class StorageError(TicketIngestionError):
    """Raised when writing to object storage or the ticket store fails."""

    code = ErrorCode.STORAGE_FAILED
