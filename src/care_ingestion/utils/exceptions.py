# ============================================================================
# src/care_ingestion/utils/exceptions.py
# ============================================================================
"""
Custom exceptions for the care ingestion pipeline.

Every exception carries an ErrorKind so the worker can report a typed
failure without inspecting messages.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    DOWNLOAD_FAILURE = "DownloadFailure"
    UNSUPPORTED_MIME_TYPE = "UnsupportedMimeType"
    NO_STRUCTURED_OUTPUT = "NoStructuredOutput"
    SCHEMA_VALIDATION_WARNING = "SchemaValidationWarning"  # never raised
    MODEL_ERROR = "ModelError"
    RECONCILIATION_FAILURE = "ReconciliationFailure"
    PERSISTENCE_FAILURE = "PersistenceFailure"
    DOCUMENT_CONVERSION = "DocumentConversionFailure"
    CONFIGURATION_ERROR = "ConfigurationError"
    QUEUE_FAILURE = "QueueFailure"


class CareIngestionError(Exception):
    """Base exception for all care ingestion errors."""
    kind: ErrorKind = ErrorKind.MODEL_ERROR


class ExtractionError(CareIngestionError):
    """Error turning a document into an extraction record."""
    pass


class DownloadError(ExtractionError):
    """Source file could not be fetched."""
    kind = ErrorKind.DOWNLOAD_FAILURE

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class UnsupportedMimeTypeError(ExtractionError):
    """Declared MIME type cannot be parsed."""
    kind = ErrorKind.UNSUPPORTED_MIME_TYPE

    def __init__(self, mime_type: str):
        super().__init__(f"Unsupported file type for parsing: {mime_type}")
        self.mime_type = mime_type


class NoStructuredOutputError(ExtractionError):
    """Model response did not contain a JSON object."""
    kind = ErrorKind.NO_STRUCTURED_OUTPUT

    def __init__(self, message: str, response_preview: str = ""):
        super().__init__(message)
        self.response_preview = response_preview


class DocumentConversionError(ExtractionError):
    """PDF could neither be text-extracted nor rendered to page images."""
    kind = ErrorKind.DOCUMENT_CONVERSION


class ModelError(ExtractionError):
    """The AI capability failed (network, auth, timeout, provider error)."""
    kind = ErrorKind.MODEL_ERROR


class ReconciliationError(CareIngestionError):
    """Medication reconciliation could not complete."""
    kind = ErrorKind.RECONCILIATION_FAILURE


class PersistenceError(CareIngestionError):
    """Error reading or writing the care store."""
    kind = ErrorKind.PERSISTENCE_FAILURE


class ConfigurationError(CareIngestionError):
    """Invalid configuration."""
    kind = ErrorKind.CONFIGURATION_ERROR


class QueueError(CareIngestionError):
    """The message broker could not be reached or refused an operation."""
    kind = ErrorKind.QUEUE_FAILURE
