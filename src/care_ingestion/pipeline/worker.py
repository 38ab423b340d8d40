# ============================================================================
# src/care_ingestion/pipeline/worker.py
# ============================================================================
"""
Document Processing Worker

Owns a document's parsing lifecycle:

    PENDING -> PROCESSING -> COMPLETED | FAILED

1. Job pickup: persist PROCESSING
2. Extraction: on success persist the parsed data and COMPLETED; on any
   failure persist FAILED and re-raise so the queue can retry
3. Post-parse processing: never fails the job; the document stays
   COMPLETED and the summary reports degraded enrichment
"""

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict

from ..constants import ParsingStatus
from ..extractors import ExtractionAdapter
from ..extractors.events import ErrorEvent, ExtractionEvent, StatusEvent
from ..storage import CareStore
from .processing import DocumentProcessingService

DOMAIN_HINT = "medical_record"


class DocumentJobPayload(BaseModel):
    """Inbound job payload."""
    model_config = ConfigDict(extra="ignore")

    document_id: str
    family_id: str
    user_id: str
    file_url: str
    file_type: str


class DocumentProcessingWorker:
    """Processes one document job end to end."""

    def __init__(
        self,
        store: CareStore,
        adapter: ExtractionAdapter,
        processing: Optional[DocumentProcessingService] = None,
    ):
        self.store = store
        self.adapter = adapter
        self.processing = processing or DocumentProcessingService(store)
        self.logger = logging.getLogger(self.__class__.__name__)

    def _event_logger(self, document_id: str):
        def on_event(event: ExtractionEvent) -> None:
            if isinstance(event, StatusEvent):
                level = logging.WARNING if event.status == "validation_warning" else logging.DEBUG
                self.logger.log(level, f"Document {document_id} parsing status: {event.status}")
            elif isinstance(event, ErrorEvent):
                self.logger.warning(f"Document {document_id} parsing error ({event.kind}): {event.message}")
        return on_event

    async def process(self, data: Dict[str, Any], job_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Run one document job.

        Raises:
            Exception: whatever failed during extraction, after FAILED is persisted
        """
        payload = DocumentJobPayload.model_validate(data)
        document_id = payload.document_id

        self.logger.info(
            f"Processing document {document_id} (job {job_id}, family {payload.family_id}, type {payload.file_type})"
        )

        try:
            self.store.set_parsing_status(document_id, ParsingStatus.PROCESSING)

            outcome = await self.adapter.extract_document(
                payload.file_url,
                payload.file_type,
                on_event=self._event_logger(document_id),
                domain_hint=DOMAIN_HINT,
            )

            self.store.save_parsed_data(document_id, outcome.parsed_data)
        except Exception as e:
            self.logger.error(f"Document processing failed for {document_id} (job {job_id}): {type(e).__name__}: {e}")
            self.store.set_parsing_status(document_id, ParsingStatus.FAILED, error_message=str(e))
            raise

        self.logger.info(f"Document {document_id} parsed successfully ({outcome.kind.value})")

        result = await self.processing.process_after_parsing(
            document_id=document_id,
            family_id=payload.family_id,
            user_id=payload.user_id,
            record=outcome.record,
        )

        try:
            self.store.save_processing_summary(document_id, result.summary)
        except Exception as e:
            self.logger.error(f"Could not save processing summary for {document_id}: {e}")

        self.logger.info(
            f"Document {document_id} processing completed: provider_created={result.provider_created}, "
            f"journal_entry={bool(result.journal_entry_id)}, "
            f"recommendations={len(result.recommendation_ids)}, "
            f"reconciliation_recommendations={len(result.reconciliation_recommendation_ids)}"
        )

        return {
            "success": True,
            "document_id": document_id,
            "validation_warnings": len(outcome.validation_errors),
            "processing_result": result.to_dict(),
        }
