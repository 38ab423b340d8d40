# ============================================================================
# src/care_ingestion/enrichers/journal_enricher.py
# ============================================================================
"""
Journal Enricher

Records the visit summary as a journal entry, one per source document.
Re-processing a document returns the entry it already produced.
"""

import logging
from typing import List

from ..schemas.extraction import VisitInfo
from ..utils.dates import parse_visit_date
from .base import EnrichmentContext, EnrichmentResult, EntityEnricher

logger = logging.getLogger(__name__)


def build_journal_content(visit: VisitInfo) -> str:
    lines: List[str] = [visit.summary.strip()]
    if visit.follow_up:
        lines.append(f"Follow-up: {visit.follow_up}")
    if visit.next_appointment:
        lines.append(f"Next appointment: {visit.next_appointment}")
    return "\n\n".join(lines)


def build_journal_title(visit: VisitInfo) -> str:
    if visit.provider.name:
        return f"Visit with {visit.provider.name}"
    if visit.facility:
        return f"Visit at {visit.facility}"
    return "Visit summary"


class JournalEnricher(EntityEnricher):
    """Creates a journal entry from the visit summary."""

    @property
    def enricher_type(self) -> str:
        return "journal"

    async def enrich(self, context: EnrichmentContext) -> EnrichmentResult:
        visit = context.record.visit
        if not visit.summary or not visit.summary.strip():
            return self._create_result()

        existing = self.store.find_journal_entry_for_document(context.document_id)
        if existing is not None:
            logger.info(f"Journal entry already exists for document {context.document_id}")
            return self._create_result(entity_id=existing.id, created=False)

        entry_id = self.store.create_journal_entry(
            family_id=context.family_id,
            user_id=context.user_id,
            patient_id=context.patient_id,
            title=build_journal_title(visit),
            content=build_journal_content(visit),
            source_document_id=context.document_id,
            provider_id=context.provider_id,
            entry_date=parse_visit_date(visit.date_of_service),
        )
        logger.info(f"Created journal entry {entry_id} from visit summary")
        return self._create_result(
            entity_id=entry_id,
            created=True,
            details={"provider_id": context.provider_id},
        )
