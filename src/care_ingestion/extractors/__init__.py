"""Document extraction: source selection, AI client, JSON recovery."""

from .adapter import (
    ExtractionAdapter,
    ExtractionInput,
    ExtractionKind,
    ExtractionOutcome,
    extract_json_object,
    truncate_text,
)
from .client import BaseExtractionClient, ImagePart, OpenAIExtractionClient, TextPart, create_client
from .events import DeltaEvent, ErrorEvent, ResultEvent, StatusEvent

__all__ = [
    "ExtractionAdapter",
    "ExtractionInput",
    "ExtractionKind",
    "ExtractionOutcome",
    "extract_json_object",
    "truncate_text",
    "BaseExtractionClient",
    "OpenAIExtractionClient",
    "ImagePart",
    "TextPart",
    "create_client",
    "StatusEvent",
    "DeltaEvent",
    "ResultEvent",
    "ErrorEvent",
]
