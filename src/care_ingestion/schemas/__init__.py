"""Validated data contracts."""

from .extraction import (
    DocumentType,
    ExtractionRecord,
    MedicationMention,
    ParsedRecommendation,
    ValidationResult,
    validate_extraction,
)

__all__ = [
    "DocumentType",
    "ExtractionRecord",
    "MedicationMention",
    "ParsedRecommendation",
    "ValidationResult",
    "validate_extraction",
]
