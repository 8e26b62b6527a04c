"""Exception hierarchy for the bulk OCR pipeline.

Errors are grouped by the layer that raises them so the scheduler can decide
what fails a page, a chunk or a whole job, and the HTTP layer can map them to
status codes.
"""
from __future__ import annotations

from typing import Any


class BulkOCRError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class InvalidJobError(BulkOCRError):
    """Raised when a job is rejected at enqueue time."""


class ConfigurationError(BulkOCRError):
    """Raised when the OCR provider credential or model is missing or malformed."""


class InvalidInputError(BulkOCRError):
    """Raised when page image data is missing or not a recognised image."""


class TransientProviderError(BulkOCRError):
    """Raised for network errors, non-success responses and empty OCR output."""


class OCRRetryExhaustedError(BulkOCRError):
    """Raised once a page has failed on every allowed attempt."""

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(
            f"OCR processing failed after {attempts} attempt(s): {last_error}",
            details={"attempts": attempts, "error_type": type(last_error).__name__},
        )
        self.last_error = last_error
        self.attempts = attempts


class ChunkFailure(BulkOCRError):
    """Raised when at least one page of a chunk failed terminally.

    ``completed`` holds the page results that succeeded (and were persisted)
    before the chunk was reported as failed.
    """

    def __init__(
        self,
        page_number: int,
        cause: BaseException,
        *,
        completed: list[Any] | None = None,
    ) -> None:
        super().__init__(
            f"Failed to process page {page_number}: {cause}",
            details={"page_number": page_number},
        )
        self.page_number = page_number
        self.cause = cause
        self.completed = list(completed or [])


class JobNotFoundError(BulkOCRError):
    """Raised when a job id is unknown to the scheduler or store."""


class JobStateError(BulkOCRError):
    """Raised when an operation is not allowed in the job's current status."""


__all__ = [
    "BulkOCRError",
    "InvalidJobError",
    "ConfigurationError",
    "InvalidInputError",
    "TransientProviderError",
    "OCRRetryExhaustedError",
    "ChunkFailure",
    "JobNotFoundError",
    "JobStateError",
]
