# ============================================================================
# src/care_ingestion/extractors/events.py
# ============================================================================
"""
Extraction lifecycle events.

A single extraction call streams text before the final record exists. The
adapter reports progress as a tagged union of events delivered to an
observer callable:

- StatusEvent: phase changes ("analyzing", "analyzing_pages", "validation_warning")
- DeltaEvent: a chunk of streamed model output
- ResultEvent: the final parsed data
- ErrorEvent: terminal failure, emitted right before the exception is raised
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Union


@dataclass(frozen=True)
class StatusEvent:
    status: str
    detail: Optional[Dict[str, Any]] = None
    type: str = field(default="status", init=False)


@dataclass(frozen=True)
class DeltaEvent:
    text: str
    type: str = field(default="delta", init=False)


@dataclass(frozen=True)
class ResultEvent:
    parsed: Dict[str, Any]
    type: str = field(default="result", init=False)


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    kind: Optional[str] = None
    type: str = field(default="error", init=False)


ExtractionEvent = Union[StatusEvent, DeltaEvent, ResultEvent, ErrorEvent]
EventObserver = Callable[[ExtractionEvent], None]


def ignore_events(event: ExtractionEvent) -> None:
    """Observer that drops everything."""
    return None
