# ============================================================================
# src/care_ingestion/reconciliation/engine.py
# ============================================================================
"""
Medication Reconciliation

Compares every medication a document mentions with the patient's active
medication list and produces caregiver recommendations:

- exact          -> no action
- dosage_change  -> HIGH MEDICATION "Dosage change"
- fuzzy          -> MEDIUM MEDICATION "Verify medication"
- none           -> MEDICATION "Add new medication" (HIGH for critical or
                    high-priority drugs, MEDIUM otherwise)
- never matched  -> MEDIUM MONITORING "Medication not listed"

Mentions whose status says the patient is not taking them are skipped.
Reconciliation is all-or-nothing: any unexpected error yields an empty,
zeroed result flagged as failed. The medication list is only read.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set

from ..config import threshold_settings
from ..constants import MatchType, ReconciliationType, RecommendationPriority, RecommendationType
from ..constants.medications import DISCONTINUED_STATUS_WORDS, medication_priority_rank
from ..schemas.extraction import MedicationMention
from ..storage import ExistingMedication
from ..utils.exceptions import ReconciliationError
from .matching import MedicationMatch, MedicationMatcher


@dataclass
class ReconciliationRecommendation:
    type: RecommendationType
    title: str
    description: str
    priority: RecommendationPriority
    linked_medication_id: Optional[str]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ReconciliationStats:
    total_document_meds: int = 0
    exact_matches: int = 0
    new_medications: int = 0
    dosage_changes: int = 0
    fuzzy_matches: int = 0
    discontinued_medications: int = 0
    skipped_discontinued: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class ReconciliationResult:
    recommendations: List[ReconciliationRecommendation] = field(default_factory=list)
    stats: ReconciliationStats = field(default_factory=ReconciliationStats)
    failed: bool = False
    error: Optional[str] = None


def is_discontinued_mention(mention: MedicationMention) -> bool:
    """True if the mention's status says the patient is not taking it."""
    status = (mention.status or "").lower()
    return any(word in status for word in DISCONTINUED_STATUS_WORDS)


def new_medication_priority(name: str) -> RecommendationPriority:
    if medication_priority_rank(name) in ("critical", "high"):
        return RecommendationPriority.HIGH
    return RecommendationPriority.MEDIUM


def _join(*parts: Optional[str]) -> str:
    return " ".join(part for part in parts if part)


def _mention_summary(mention: MedicationMention) -> Dict[str, Any]:
    return {"name": mention.name, "dosage": mention.dosage, "frequency": mention.frequency}


def _existing_summary(med: ExistingMedication) -> Dict[str, Any]:
    return {"id": med.id, "name": med.name, "dosage": med.dosage, "frequency": med.frequency}


class ReconciliationEngine:
    """Runs the matcher over a document's medication mentions."""

    def __init__(
        self,
        matcher: MedicationMatcher,
        fuzzy_threshold: float = threshold_settings.FUZZY_MATCH_THRESHOLD,
    ):
        self.matcher = matcher
        self.fuzzy_threshold = fuzzy_threshold
        self.logger = logging.getLogger(self.__class__.__name__)

    async def reconcile(
        self,
        patient_id: str,
        document_medications: Sequence[MedicationMention],
    ) -> ReconciliationResult:
        """Reconcile against the patient's active medications in the store."""
        try:
            if self.matcher.store is None:
                raise ReconciliationError("No care store configured for reconciliation")
            existing = self.matcher.store.list_active_medications(patient_id)
            return self.reconcile_against(document_medications, existing)
        except Exception as e:
            self.logger.exception(f"Medication reconciliation failed for patient {patient_id}: {e}")
            return ReconciliationResult(failed=True, error=f"{type(e).__name__}: {e}")

    def reconcile_against(
        self,
        document_medications: Sequence[MedicationMention],
        existing_medications: Sequence[ExistingMedication],
    ) -> ReconciliationResult:
        """
        Pure reconciliation over an explicit medication list.

        Exceptions propagate; reconcile() turns them into a failed result.
        """
        active = sorted((med for med in existing_medications if med.is_active), key=lambda med: med.id)
        stats = ReconciliationStats(total_document_meds=len(document_medications))
        recommendations: List[ReconciliationRecommendation] = []
        matched_ids: Set[str] = set()

        self.logger.info(
            f"Reconciling {len(document_medications)} document medication(s) "
            f"against {len(active)} active medication(s)"
        )

        for mention in document_medications:
            if is_discontinued_mention(mention):
                stats.skipped_discontinued += 1
                self.logger.debug(f"Skipping discontinued medication: {mention.name}")
                continue

            match = self.matcher.match_against(mention.name, mention.dosage, active)

            if match.match_type == MatchType.EXACT:
                stats.exact_matches += 1
                matched_ids.add(match.matched.id)

            elif match.match_type == MatchType.DOSAGE_CHANGE:
                stats.dosage_changes += 1
                matched_ids.add(match.matched.id)
                recommendations.append(self._dosage_change(mention, match))
                self.logger.info(f"Dosage change detected: {match.matched.name}")

            elif match.match_type == MatchType.FUZZY and match.confidence >= self.fuzzy_threshold:
                stats.fuzzy_matches += 1
                matched_ids.add(match.matched.id)
                recommendations.append(self._fuzzy_match(mention, match))
                self.logger.info(f"Fuzzy match for {mention.name} -> {match.matched.name}")

            else:
                stats.new_medications += 1
                recommendations.append(self._new_medication(mention, match))
                self.logger.info(f"New medication detected: {mention.name}")

        for med in active:
            if med.id not in matched_ids:
                stats.discontinued_medications += 1
                recommendations.append(self._not_listed(med))
                self.logger.info(f"Potentially discontinued medication: {med.name}")

        self.logger.info(
            f"Medication reconciliation complete: {len(recommendations)} recommendation(s) {stats.to_dict()}"
        )
        return ReconciliationResult(recommendations=recommendations, stats=stats)

    # ------------------------------------------------------------------
    # Recommendation builders
    # ------------------------------------------------------------------
    def _dosage_change(self, mention: MedicationMention, match: MedicationMatch) -> ReconciliationRecommendation:
        med = match.matched
        return ReconciliationRecommendation(
            type=RecommendationType.MEDICATION,
            title=f"Dosage change: {med.name}",
            description=(
                f"Document shows {_join(mention.name, mention.dosage, mention.frequency)}, "
                f"but your current medication list has {_join(med.name, med.dosage, med.frequency)}. "
                "Please verify this dosage change with your healthcare provider."
            ),
            priority=RecommendationPriority.HIGH,
            linked_medication_id=med.id,
            metadata={
                "reconciliation_type": ReconciliationType.DOSAGE_CHANGE.value,
                "document_medication": _mention_summary(mention),
                "existing_medication": _existing_summary(med),
                "confidence": match.confidence,
            },
        )

    def _fuzzy_match(self, mention: MedicationMention, match: MedicationMatch) -> ReconciliationRecommendation:
        med = match.matched
        return ReconciliationRecommendation(
            type=RecommendationType.MEDICATION,
            title=f"Verify medication: {mention.name}",
            description=(
                f'Document lists "{mention.name}" which appears similar to your existing medication '
                f'"{med.name}". Please confirm if these are the same medication '
                f"({round(match.confidence * 100)}% confidence match)."
            ),
            priority=RecommendationPriority.MEDIUM,
            linked_medication_id=med.id,
            metadata={
                "reconciliation_type": ReconciliationType.FUZZY_MATCH.value,
                "document_medication": _mention_summary(mention),
                "existing_medication": _existing_summary(med),
                "confidence": match.confidence,
            },
        )

    def _new_medication(self, mention: MedicationMention, match: MedicationMatch) -> ReconciliationRecommendation:
        description = (
            f"Document lists {_join(mention.name, mention.dosage, mention.frequency)}, "
            "which is not in your current medication list. "
            "Consider adding this medication to track it properly."
        )
        if mention.notes:
            description += f" Note: {mention.notes}"

        metadata: Dict[str, Any] = {
            "reconciliation_type": ReconciliationType.NEW.value,
            "document_medication": _mention_summary(mention),
        }
        if match.nearest:
            metadata["nearest_candidate"] = {
                **_existing_summary(match.nearest.medication),
                "score": round(match.nearest.score, 4),
            }

        return ReconciliationRecommendation(
            type=RecommendationType.MEDICATION,
            title=f"Add new medication: {mention.name}",
            description=description,
            priority=new_medication_priority(mention.name),
            linked_medication_id=None,
            metadata=metadata,
        )

    def _not_listed(self, med: ExistingMedication) -> ReconciliationRecommendation:
        return ReconciliationRecommendation(
            type=RecommendationType.MONITORING,
            title=f"Medication not listed: {med.name}",
            description=(
                f"{_join(med.name, med.dosage)} is in your medication list but was not mentioned "
                "in the recent visit document. Please confirm if you are still taking this medication."
            ),
            priority=RecommendationPriority.MEDIUM,
            linked_medication_id=med.id,
            metadata={
                "reconciliation_type": ReconciliationType.DISCONTINUED.value,
                "existing_medication": _existing_summary(med),
            },
        )
