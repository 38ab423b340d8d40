"""Document lifecycle orchestration."""

from .processing import (
    DocumentProcessingService,
    MatchedRecommendation,
    ProcessingResult,
    build_summary_message,
)
from .worker import DocumentJobPayload, DocumentProcessingWorker

__all__ = [
    "DocumentProcessingService",
    "MatchedRecommendation",
    "ProcessingResult",
    "build_summary_message",
    "DocumentJobPayload",
    "DocumentProcessingWorker",
]
