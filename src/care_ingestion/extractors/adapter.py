# ============================================================================
# src/care_ingestion/extractors/adapter.py
# ============================================================================
"""
Extraction Adapter

Turns one source document into a validated ExtractionRecord:

1. Source selection (extract_document): the declared MIME type decides the
   path before anything is downloaded.
   - image/*          -> base64 image
   - application/pdf  -> local text layer if it carries signal, else page images
   - text/plain       -> decoded text
2. Streaming call to the AI capability, emitting status/delta events.
3. JSON object located in the response (fences stripped, first '{' to last '}').
4. Schema validation; failures become a validation_warning status event and
   the best-effort data is still returned.

Every failure is emitted as an ErrorEvent and then raised as a typed
ExtractionError so the job queue's retry policy applies.
"""

import asyncio
import base64
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse

from json_repair import repair_json

from ..config import ai_settings, threshold_settings
from ..schemas.extraction import ExtractionRecord, validate_extraction
from ..utils.exceptions import CareIngestionError, NoStructuredOutputError, UnsupportedMimeTypeError
from ..utils.logging import log_performance
from .client import BaseExtractionClient, ContentPart, ImagePart, TextPart
from .download import FileDownloader
from .events import (
    DeltaEvent,
    ErrorEvent,
    EventObserver,
    ResultEvent,
    StatusEvent,
    ignore_events,
)
from .pdf import extract_pdf_text, render_pdf_pages
from .prompts import SYSTEM_PROMPT, build_extraction_instructions, build_text_instructions

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n...\n[truncated]\n...\n"

_IMAGE_MEDIA_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}
_SUFFIX_MEDIA_TYPES = {
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}


class ExtractionKind(str, Enum):
    IMAGE = "image"
    PDF_TEXT = "pdf_text"  # any text source, including text/plain
    PDF_IMAGES = "pdf_images"


@dataclass
class ExtractionInput:
    """
    One parse request.

    payload is the text for PDF_TEXT and a list of ImageParts for
    IMAGE / PDF_IMAGES.
    """
    kind: ExtractionKind
    payload: Union[str, List[ImagePart]]
    domain_hint: str = "medical"


@dataclass
class ExtractionOutcome:
    record: ExtractionRecord
    parsed_data: Dict[str, Any]
    kind: ExtractionKind
    validation_errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.validation_errors


def truncate_text(text: str, max_chars: int = ai_settings.MAX_TEXT_CHARS) -> str:
    """
    Fit text into the size budget.

    Keeps the first 70% and the last 10% of the budget around a truncation
    marker. Text within budget is returned unchanged.
    """
    if len(text) <= max_chars:
        return text
    head = text[:int(max_chars * 0.7)]
    tail_len = int(max_chars * 0.1)
    tail = text[-tail_len:] if tail_len > 0 else ""
    return f"{head}{TRUNCATION_MARKER}{tail}"


def extract_json_object(response_text: str) -> Any:
    """
    Parse the JSON object embedded in a model response.

    Raises:
        NoStructuredOutputError: no '{' ... '}' span, or the span cannot be parsed
    """
    cleaned = response_text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    cleaned = cleaned.strip()

    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first == -1 or last == -1 or last < first:
        raise NoStructuredOutputError("Model did not return JSON", response_preview=response_text[:200])

    candidate = cleaned[first:last + 1]
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    # Trailing commas, single quotes, unescaped newlines
    repaired = repair_json(candidate, return_objects=True)
    if isinstance(repaired, dict) and repaired:
        logger.debug("json_repair fixed model response")
        return repaired

    raise NoStructuredOutputError("Model returned malformed JSON", response_preview=candidate[:200])


def _normalize_mime(file_type: Optional[str]) -> str:
    return (file_type or "").split(";")[0].strip().lower()


def _image_media_type(mime: str, url: str) -> str:
    if mime == "image/jpg":
        return "image/jpeg"
    if mime in _IMAGE_MEDIA_TYPES:
        return mime
    suffix = PurePosixPath(urlparse(url).path).suffix.lower()
    return _SUFFIX_MEDIA_TYPES.get(suffix, "image/jpeg")


class ExtractionAdapter:
    """Drives one document through the AI extraction capability."""

    def __init__(
        self,
        client: BaseExtractionClient,
        downloader: Optional[FileDownloader] = None,
        max_text_chars: int = ai_settings.MAX_TEXT_CHARS,
        pdf_text_min_chars: int = threshold_settings.PDF_TEXT_MIN_CHARS,
        pdf_max_pages: int = ai_settings.PDF_MAX_PAGES,
    ):
        self.client = client
        self.downloader = downloader or FileDownloader()
        self.max_text_chars = max_text_chars
        self.pdf_text_min_chars = pdf_text_min_chars
        self.pdf_max_pages = pdf_max_pages
        self.logger = logging.getLogger(self.__class__.__name__)

    async def extract_document(
        self,
        file_url: str,
        file_type: str,
        on_event: EventObserver = ignore_events,
        domain_hint: str = "medical",
    ) -> ExtractionOutcome:
        """Select the input form for a stored document and extract it."""
        try:
            extraction_input = await self.prepare_input(file_url, file_type, domain_hint)
        except CareIngestionError as e:
            on_event(ErrorEvent(message=str(e), kind=e.kind.value))
            raise
        return await self.extract(extraction_input, on_event)

    async def prepare_input(self, file_url: str, file_type: str, domain_hint: str = "medical") -> ExtractionInput:
        """
        Download and convert the document into an ExtractionInput.

        Raises:
            UnsupportedMimeTypeError: before any download is attempted
            DownloadError, DocumentConversionError
        """
        mime = _normalize_mime(file_type)

        if mime.startswith("image/"):
            data = await self.downloader.fetch(file_url)
            image = ImagePart(
                data=base64.b64encode(data).decode("utf-8"),
                media_type=_image_media_type(mime, file_url),
            )
            return ExtractionInput(ExtractionKind.IMAGE, [image], domain_hint)

        if mime == "application/pdf":
            data = await self.downloader.fetch(file_url)
            text = await asyncio.to_thread(extract_pdf_text, data)
            if len(text.strip()) > self.pdf_text_min_chars:
                self.logger.info(f"PDF has a text layer ({len(text)} chars), parsing as text")
                return ExtractionInput(ExtractionKind.PDF_TEXT, text, domain_hint)

            self.logger.info("PDF has little or no text, rendering pages for vision parsing")
            pages = await asyncio.to_thread(render_pdf_pages, data, self.pdf_max_pages)
            images = [
                ImagePart(data=base64.b64encode(page).decode("utf-8"), media_type="image/png")
                for page in pages
            ]
            return ExtractionInput(ExtractionKind.PDF_IMAGES, images, domain_hint)

        if mime == "text/plain":
            data = await self.downloader.fetch(file_url)
            return ExtractionInput(ExtractionKind.PDF_TEXT, data.decode("utf-8", errors="replace"), domain_hint)

        raise UnsupportedMimeTypeError(file_type)

    @log_performance(logger, "Document extraction")
    async def extract(
        self,
        extraction_input: ExtractionInput,
        on_event: EventObserver = ignore_events,
    ) -> ExtractionOutcome:
        """
        Run one extraction call.

        Raises:
            ExtractionError: model failure or no JSON object in the response
        """
        try:
            content = self._build_content(extraction_input, on_event)

            chunks = []
            async for chunk in self.client.stream_completion(SYSTEM_PROMPT, content):
                chunks.append(chunk)
                on_event(DeltaEvent(text=chunk))

            return self._parse_and_validate("".join(chunks), extraction_input.kind, on_event)
        except CareIngestionError as e:
            on_event(ErrorEvent(message=str(e), kind=e.kind.value))
            raise

    def _build_content(self, extraction_input: ExtractionInput, on_event: EventObserver) -> List[ContentPart]:
        detail = {"model": self.client.model_name}

        if extraction_input.kind == ExtractionKind.PDF_TEXT:
            on_event(StatusEvent("analyzing", detail))
            text = truncate_text(extraction_input.payload, self.max_text_chars)
            return [TextPart(build_text_instructions(extraction_input.domain_hint, text))]

        images = list(extraction_input.payload)
        if extraction_input.kind == ExtractionKind.PDF_IMAGES:
            on_event(StatusEvent("analyzing_pages", {**detail, "page_count": len(images)}))
        else:
            on_event(StatusEvent("analyzing", detail))
        return [*images, TextPart(build_extraction_instructions(extraction_input.domain_hint))]

    def _parse_and_validate(
        self,
        full_text: str,
        kind: ExtractionKind,
        on_event: EventObserver,
    ) -> ExtractionOutcome:
        raw = extract_json_object(full_text)
        result = validate_extraction(raw)

        if not result.is_valid:
            on_event(StatusEvent("validation_warning", {"errors": result.errors}))

        parsed_data = result.parsed_data()
        on_event(ResultEvent(parsed=parsed_data))
        return ExtractionOutcome(
            record=result.record,
            parsed_data=parsed_data,
            kind=kind,
            validation_errors=result.errors,
        )

    async def close(self) -> None:
        await self.downloader.close()
        await self.client.close()
