# ============================================================================
# src/care_ingestion/reconciliation/matching.py
# ============================================================================
"""
Medication & Activity Matching

Matches a medication mention (name + dosage as written in a document) to
the patient's active medication list.

Priority order:
1. Same normalized name, same dosage (or either dosage missing) -> exact, 1.0
2. Same normalized name, different dosage -> dosage_change, 1.0
3. Best fuzzy score >= FUZZY_MATCH_THRESHOLD -> fuzzy, confidence = score
4. Otherwise none; the best below-threshold candidate is kept as `nearest`

Fuzzy score is max(edit-distance similarity, token overlap); known
brand/generic pairs score at least BRAND_MATCH_SCORE. Ties resolve by
score, then edit distance, then medication id, so a fixed input always
yields the same match.

Exercise recommendations are matched against the patient's checklist
items by title/description similarity.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from ..config import threshold_settings
from ..constants import ChecklistCategory, MatchType
from ..constants.medications import (
    FORM_AND_UNIT_PATTERN,
    is_brand_generic_pair,
    levenshtein_distance,
    string_similarity,
)
from ..storage import CareStore, ChecklistItem, ExistingMedication

logger = logging.getLogger(__name__)

NameScorer = Callable[[str, str], float]

_PARENTHETICAL = re.compile(r"\([^)]*\)")
_PUNCTUATION = re.compile(r"[^\w\s]")
_STRENGTH = re.compile(r"\b\d+(?:\.\d+)?\s*(?:mg|mcg|ml|g|units?|iu)?\b")
_RATIO = re.compile(r"\b(\d+)\s*/\s*(\d+)\b")
_WHITESPACE = re.compile(r"\s+")


def normalize_medication_name(name: Optional[str]) -> str:
    """
    Canonical form of a medication name for comparison.

    "Metformin ER 500 mg (Glucophage) tablet" -> "metformin"

    Premix ratios are part of the product, not a strength, and are kept
    at the end: "Humulin 70/30 (NPH/Regular)" -> "humulin 70/30".
    """
    if not name:
        return ""
    text = _PARENTHETICAL.sub(" ", name.lower())
    ratios = [f"{a}/{b}" for a, b in _RATIO.findall(text)]
    text = _RATIO.sub(" ", text)
    text = _PUNCTUATION.sub(" ", text)
    text = _STRENGTH.sub(" ", text)
    text = FORM_AND_UNIT_PATTERN.sub(" ", text)
    return _WHITESPACE.sub(" ", " ".join([text] + ratios)).strip()


def normalize_dosage(dosage: Optional[str]) -> Optional[str]:
    """"500 Milligrams" -> "500mg". Blank dosages normalize to None."""
    if not dosage or not dosage.strip():
        return None
    text = _WHITESPACE.sub("", dosage.lower())
    text = re.sub(r"milligrams?", "mg", text)
    text = re.sub(r"micrograms?", "mcg", text)
    text = re.sub(r"milliliters?", "ml", text)
    return text


def token_overlap(a: str, b: str) -> float:
    """Shared tokens over the larger token set."""
    tokens_a = set(a.split())
    tokens_b = set(b.split())
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / max(len(tokens_a), len(tokens_b))


def medication_name_score(mention_name: str, existing_name: str) -> float:
    """Fuzzy similarity of two medication names in [0, 1]."""
    a = normalize_medication_name(mention_name)
    b = normalize_medication_name(existing_name)
    score = max(string_similarity(a, b), token_overlap(a, b))
    if is_brand_generic_pair(mention_name, existing_name):
        score = max(score, threshold_settings.BRAND_MATCH_SCORE)
    return score


@dataclass
class NearestCandidate:
    """Best fuzzy candidate that fell below the match threshold."""
    medication: ExistingMedication
    score: float


@dataclass
class MedicationMatch:
    match_type: MatchType
    matched: Optional[ExistingMedication]
    confidence: float
    explanation: str
    nearest: Optional[NearestCandidate] = None


@dataclass
class ActivityMatch:
    match_type: str  # exact | similar | none
    matched: Optional[ChecklistItem]
    confidence: float
    explanation: str


def _describe(med: ExistingMedication) -> str:
    return " ".join(part for part in (med.name, med.dosage) if part)


class MedicationMatcher:
    """
    Matches mentions against active medications.

    Args:
        store: source of the patient's active medications (match_medication)
        scorer: fuzzy name scorer, defaults to medication_name_score
        fuzzy_threshold: minimum fuzzy score for a match
    """

    def __init__(
        self,
        store: Optional[CareStore] = None,
        scorer: Optional[NameScorer] = None,
        fuzzy_threshold: float = threshold_settings.FUZZY_MATCH_THRESHOLD,
        activity_threshold: float = threshold_settings.ACTIVITY_MATCH_THRESHOLD,
        activity_exact_threshold: float = threshold_settings.ACTIVITY_EXACT_THRESHOLD,
    ):
        self.store = store
        self.scorer = scorer or medication_name_score
        self.fuzzy_threshold = fuzzy_threshold
        self.activity_threshold = activity_threshold
        self.activity_exact_threshold = activity_exact_threshold

    async def match_medication(
        self,
        name: str,
        dosage: Optional[str],
        patient_id: str
    ) -> MedicationMatch:
        """Match a mention against the patient's active medications."""
        medications = self.store.list_active_medications(patient_id)
        return self.match_against(name, dosage, medications)

    def match_against(
        self,
        name: str,
        dosage: Optional[str],
        medications: Sequence[ExistingMedication]
    ) -> MedicationMatch:
        """Pure matching over an explicit medication list."""
        active = sorted((med for med in medications if med.is_active), key=lambda med: med.id)
        if not active:
            return MedicationMatch(MatchType.NONE, None, 0.0, "No existing medications to match against")

        normalized_name = normalize_medication_name(name)
        mention_dosage = normalize_dosage(dosage)

        exact: Optional[ExistingMedication] = None
        dosage_change: Optional[ExistingMedication] = None
        scored = []

        for med in active:
            normalized_existing = normalize_medication_name(med.name)

            if normalized_name and normalized_name == normalized_existing:
                existing_dosage = normalize_dosage(med.dosage)
                if mention_dosage is None or existing_dosage is None or mention_dosage == existing_dosage:
                    exact = exact or med
                else:
                    dosage_change = dosage_change or med
                continue

            score = self.scorer(name, med.name)
            distance = levenshtein_distance(normalized_name, normalized_existing)
            scored.append((score, distance, med))

        if exact:
            return MedicationMatch(
                MatchType.EXACT, exact, 1.0,
                f"Exact match: already taking {_describe(exact)}",
            )

        if dosage_change:
            return MedicationMatch(
                MatchType.DOSAGE_CHANGE, dosage_change, 1.0,
                f"Dosage change from {_describe(dosage_change)} to {dosage}",
            )

        if scored:
            scored.sort(key=lambda item: (-item[0], item[1], item[2].id))
            best_score, _, best = scored[0]

            if best_score >= self.fuzzy_threshold:
                return MedicationMatch(
                    MatchType.FUZZY, best, best_score,
                    f"This might be the same as {best.name} ({round(best_score * 100)}% similar)",
                )

            if best_score > 0:
                logger.debug(
                    f"Near miss for '{name}': {best.name} scored {best_score:.2f} "
                    f"(threshold {self.fuzzy_threshold:.2f})"
                )
                return MedicationMatch(
                    MatchType.NONE, None, 0.0, "No similar medications found",
                    nearest=NearestCandidate(medication=best, score=best_score),
                )

        return MedicationMatch(MatchType.NONE, None, 0.0, "No similar medications found")

    async def match_activity(self, description: str, patient_id: str) -> ActivityMatch:
        """Match an exercise recommendation against active exercise checklist items."""
        items = self.store.list_active_checklist_items(patient_id, ChecklistCategory.EXERCISE.value)
        return self.match_activity_against(description, items)

    def match_activity_against(self, description: str, items: Sequence[ChecklistItem]) -> ActivityMatch:
        if not items:
            return ActivityMatch("none", None, 0.0, "No existing exercise activities to match against")

        normalized_input = (description or "").lower().strip()
        best: Optional[ChecklistItem] = None
        best_score = 0.0

        for item in items:
            title = item.title.lower().strip()
            desc = (item.description or "").lower().strip()

            title_similarity = string_similarity(normalized_input, title)
            desc_similarity = string_similarity(normalized_input, desc) if desc else 0.0
            contains = 0.8 if normalized_input and title and (
                title in normalized_input or normalized_input in title
            ) else 0.0

            score = max(title_similarity, desc_similarity, contains)
            if score > best_score and score >= self.activity_threshold:
                best = item
                best_score = score

        if best is None:
            return ActivityMatch("none", None, 0.0, "No similar activities found")

        if best_score >= self.activity_exact_threshold:
            return ActivityMatch("exact", best, best_score, f"This matches your existing activity: {best.title}")
        return ActivityMatch(
            "similar", best, best_score,
            f"This is similar to your existing activity: {best.title} ({round(best_score * 100)}% match)",
        )
