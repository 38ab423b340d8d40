# ============================================================================
# src/care_ingestion/pipeline/processing.py
# ============================================================================
"""
Post-parse processing.

Runs after a document's parsed data is persisted as COMPLETED:

1. Provider upsert
2. Journal entry from the visit summary
3. Medication reconciliation, then persistence of its findings
4. Recommendations from the document
5. Matching of those recommendations against existing medications and
   exercise checklist items

Each step is isolated: a failure is logged, recorded in enrichment_errors
and degrades the summary, but never fails the document or the job.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..constants import MatchType, RecommendationType
from ..enrichers import EnrichmentContext, JournalEnricher, ProviderEnricher
from ..reconciliation import (
    ActivityMatch,
    MedicationMatch,
    MedicationMatcher,
    ReconciliationEngine,
    ReconciliationStats,
)
from ..recommendations import RecommendationService
from ..schemas.extraction import ExtractionRecord
from ..storage import CareStore

SUMMARY_NO_PATIENT = "Document parsed but no patient found for auto-population"
SUMMARY_DEGRADED = "Document parsed successfully but auto-population encountered errors"
SUMMARY_EMPTY = "Document parsed successfully"

_MEDICATION_NAME_PATTERNS = (
    re.compile(r"(?:start|begin|initiate|take|continue|increase|decrease)\s+([a-z]+)", re.IGNORECASE),
    re.compile(r"^([a-z]+)\s+\d+\s*(?:mg|mcg|ml)", re.IGNORECASE),
)
_DOSAGE_PATTERN = re.compile(r"(\d+(?:\.\d+)?\s*(?:mg|mcg|ml|g))\b", re.IGNORECASE)


def extract_medication_name(text: str) -> str:
    """Heuristic medication name from a recommendation ("Start Lisinopril 10mg" -> "Lisinopril")."""
    for pattern in _MEDICATION_NAME_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    words = text.split()
    return words[0] if words else text


def extract_dosage(text: str) -> Optional[str]:
    match = _DOSAGE_PATTERN.search(text)
    return match.group(1) if match else None


@dataclass
class MatchedRecommendation:
    recommendation_id: str
    type: str
    title: str
    medication_match: Optional[MedicationMatch] = None
    activity_match: Optional[ActivityMatch] = None

    @property
    def has_match(self) -> bool:
        return self.medication_match is not None or self.activity_match is not None


@dataclass
class ProcessingResult:
    provider_id: Optional[str] = None
    provider_created: bool = False
    journal_entry_id: Optional[str] = None
    recommendation_ids: List[str] = field(default_factory=list)
    reconciliation_recommendation_ids: List[str] = field(default_factory=list)
    reconciliation_stats: Optional[ReconciliationStats] = None
    matched_recommendations: List[MatchedRecommendation] = field(default_factory=list)
    summary: str = ""
    enrichment_errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "provider_created": self.provider_created,
            "journal_entry_id": self.journal_entry_id,
            "recommendation_ids": self.recommendation_ids,
            "reconciliation_recommendation_ids": self.reconciliation_recommendation_ids,
            "reconciliation_stats": self.reconciliation_stats.to_dict() if self.reconciliation_stats else None,
            "matched_recommendations": sum(1 for m in self.matched_recommendations if m.has_match),
            "summary": self.summary,
            "enrichment_errors": self.enrichment_errors,
        }


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


def build_summary_message(result: ProcessingResult) -> str:
    """One-line digest of what was created or found."""
    parts: List[str] = []

    if result.provider_id:
        parts.append("Added provider to contacts" if result.provider_created else "Updated provider information")

    if result.journal_entry_id:
        parts.append("Created journal entry from visit")

    stats = result.reconciliation_stats
    if stats:
        medication_parts = []
        if stats.dosage_changes > 0:
            medication_parts.append(_plural(stats.dosage_changes, "dosage change"))
        if stats.new_medications > 0:
            medication_parts.append(_plural(stats.new_medications, "new medication"))
        if stats.discontinued_medications > 0:
            medication_parts.append(f"{stats.discontinued_medications} potentially discontinued")
        if medication_parts:
            parts.append(f"Medication check: {', '.join(medication_parts)}")

    if result.recommendation_ids:
        parts.append(f"Found {_plural(len(result.recommendation_ids), 'recommendation')}")
        matched = sum(1 for m in result.matched_recommendations if m.has_match)
        if matched > 0:
            parts.append(f"({matched} matched existing items)")

    return ", ".join(parts) if parts else SUMMARY_EMPTY


class DocumentProcessingService:
    """Auto-populates care-record entities from parsed document data."""

    def __init__(
        self,
        store: CareStore,
        matcher: Optional[MedicationMatcher] = None,
    ):
        self.store = store
        self.matcher = matcher or MedicationMatcher(store)
        self.reconciliation = ReconciliationEngine(self.matcher)
        self.recommendations = RecommendationService(store)
        self.provider_enricher = ProviderEnricher(store)
        self.journal_enricher = JournalEnricher(store)
        self.logger = logging.getLogger(self.__class__.__name__)

    async def process_after_parsing(
        self,
        document_id: str,
        family_id: str,
        user_id: str,
        record: ExtractionRecord,
    ) -> ProcessingResult:
        """Never raises; failures surface in the summary and enrichment_errors."""
        self.logger.info(f"Processing parsed document {document_id} for family {family_id}")
        result = ProcessingResult()

        try:
            patient = self.store.get_patient_for_family(family_id)
        except Exception as e:
            self._record_error(result, "patient lookup", e)
            result.summary = SUMMARY_DEGRADED
            return result

        if patient is None:
            self.logger.warning(f"No patient found for family {family_id}")
            result.summary = SUMMARY_NO_PATIENT
            return result

        context = EnrichmentContext(
            family_id=family_id,
            patient_id=patient.id,
            user_id=user_id,
            document_id=document_id,
            record=record,
        )
        visit_date = record.visit.date_of_service

        try:
            provider = await self.provider_enricher.enrich(context)
            result.provider_id = provider.entity_id
            result.provider_created = provider.created
            context.provider_id = provider.entity_id
        except Exception as e:
            self._record_error(result, "provider", e)

        try:
            journal = await self.journal_enricher.enrich(context)
            result.journal_entry_id = journal.entity_id
        except Exception as e:
            self._record_error(result, "journal", e)

        if record.medications:
            reconciliation = await self.reconciliation.reconcile(patient.id, record.medications)
            result.reconciliation_stats = reconciliation.stats
            if reconciliation.failed:
                result.enrichment_errors.append(f"reconciliation: {reconciliation.error}")
            else:
                result.reconciliation_recommendation_ids = self.recommendations.create_from_reconciliation(
                    family_id=family_id,
                    patient_id=patient.id,
                    document_id=document_id,
                    provider_id=result.provider_id,
                    visit_date=visit_date,
                    recommendations=reconciliation.recommendations,
                )

        if record.recommendations:
            try:
                result.recommendation_ids = self.recommendations.create_recommendations_from_parsed(
                    family_id=family_id,
                    patient_id=patient.id,
                    document_id=document_id,
                    provider_id=result.provider_id,
                    visit_date=visit_date,
                    recommendations=record.recommendations,
                )
                result.matched_recommendations = await self.run_smart_matching(
                    result.recommendation_ids, patient.id
                )
            except Exception as e:
                self._record_error(result, "recommendations", e)

        result.summary = SUMMARY_DEGRADED if result.enrichment_errors else build_summary_message(result)
        self.logger.info(f"Document processing complete: {result.summary}")
        return result

    async def run_smart_matching(self, recommendation_ids: List[str], patient_id: str) -> List[MatchedRecommendation]:
        """Link new recommendations to the medications and activities they refer to."""
        matched: List[MatchedRecommendation] = []

        for rec in self.store.get_recommendations(recommendation_ids):
            entry = MatchedRecommendation(recommendation_id=rec.id, type=rec.type, title=rec.title)
            try:
                if rec.type == RecommendationType.MEDICATION.value:
                    medication_match = await self.matcher.match_medication(
                        extract_medication_name(rec.description),
                        extract_dosage(rec.description),
                        patient_id,
                    )
                    if medication_match.match_type != MatchType.NONE:
                        entry.medication_match = medication_match
                        self.store.record_recommendation_match(
                            rec.id,
                            medication_match.match_type.value,
                            medication_match.confidence,
                            linked_medication_id=medication_match.matched.id,
                        )
                        self.logger.info(f"Medication match found: {medication_match.explanation}")

                elif rec.type == RecommendationType.EXERCISE.value:
                    activity_match = await self.matcher.match_activity(rec.description, patient_id)
                    if activity_match.match_type != "none":
                        entry.activity_match = activity_match
                        self.store.record_recommendation_match(
                            rec.id,
                            activity_match.match_type,
                            activity_match.confidence,
                            linked_checklist_item_id=activity_match.matched.id,
                        )
                        self.logger.info(f"Activity match found: {activity_match.explanation}")
            except Exception as e:
                self.logger.error(f"Error matching recommendation {rec.id}: {e}")

            matched.append(entry)

        return matched

    def _record_error(self, result: ProcessingResult, step: str, error: Exception) -> None:
        self.logger.exception(f"Auto-population step '{step}' failed: {error}")
        result.enrichment_errors.append(f"{step}: {type(error).__name__}: {error}")
