# ============================================================================
# src/care_ingestion/recommendations/service.py
# ============================================================================
"""
Recommendation persistence.

Creates PENDING recommendations from a document's parsed recommendations
and from reconciliation findings. One bad entry never blocks the rest.
"""

import logging
from typing import List, Optional, Sequence

from ..reconciliation.engine import ReconciliationRecommendation
from ..schemas.extraction import ParsedRecommendation
from ..storage import CareStore
from ..utils.dates import parse_visit_date
from .classifier import classify


class RecommendationService:
    """Writes recommendations for caregiver review."""

    def __init__(self, store: CareStore):
        self.store = store
        self.logger = logging.getLogger(self.__class__.__name__)

    def create_recommendations_from_parsed(
        self,
        family_id: str,
        patient_id: str,
        document_id: str,
        provider_id: Optional[str],
        visit_date: Optional[str],
        recommendations: Sequence[ParsedRecommendation],
    ) -> List[str]:
        """
        Persist one recommendation per parsed entry.

        Returns:
            IDs of the recommendations created, in input order
        """
        if not recommendations:
            self.logger.debug("No recommendations found in parsed data")
            return []

        parsed_visit_date = parse_visit_date(visit_date)
        created_ids: List[str] = []

        for rec in recommendations:
            try:
                classification = classify(rec.text, rec.priority, rec.type)
                created_ids.append(self.store.create_recommendation(
                    family_id=family_id,
                    patient_id=patient_id,
                    document_id=document_id,
                    provider_id=provider_id,
                    type=classification.type.value,
                    title=classification.title,
                    description=rec.text,
                    priority=classification.priority.value,
                    frequency=rec.frequency,
                    duration=rec.duration,
                    visit_date=parsed_visit_date,
                    metadata={"source": "document"},
                ))
            except Exception as e:
                self.logger.error(f"Error creating recommendation '{rec.text[:60]}': {e}")

        self.logger.info(f"Created {len(created_ids)} recommendation(s) from document {document_id}")
        return created_ids

    def create_from_reconciliation(
        self,
        family_id: str,
        patient_id: str,
        document_id: str,
        provider_id: Optional[str],
        visit_date: Optional[str],
        recommendations: Sequence[ReconciliationRecommendation],
    ) -> List[str]:
        """Persist reconciliation findings, keeping their metadata."""
        parsed_visit_date = parse_visit_date(visit_date)
        created_ids: List[str] = []

        for rec in recommendations:
            try:
                created_ids.append(self.store.create_recommendation(
                    family_id=family_id,
                    patient_id=patient_id,
                    document_id=document_id,
                    provider_id=provider_id,
                    type=rec.type.value,
                    title=rec.title,
                    description=rec.description,
                    priority=rec.priority.value,
                    visit_date=parsed_visit_date,
                    linked_medication_id=rec.linked_medication_id,
                    metadata={"source": "reconciliation", **rec.metadata},
                ))
            except Exception as e:
                self.logger.error(f"Error creating reconciliation recommendation '{rec.title}': {e}")

        if created_ids:
            self.logger.info(f"Created {len(created_ids)} reconciliation recommendation(s)")
        return created_ids
