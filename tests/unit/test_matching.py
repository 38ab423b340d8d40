# ============================================================================
# FILE: tests/unit/test_matching.py
# ============================================================================
"""
Unit tests for medication and activity matching
"""

import pytest

from care_ingestion.constants import ChecklistCategory, MatchType
from care_ingestion.reconciliation import MedicationMatcher
from care_ingestion.reconciliation.matching import (
    medication_name_score,
    normalize_dosage,
    normalize_medication_name,
    token_overlap,
)
from care_ingestion.storage import ChecklistItem, ExistingMedication


def med(med_id, name, dosage=None, frequency=None, is_active=True):
    return ExistingMedication(
        id=med_id, patient_id="p1", name=name, dosage=dosage, frequency=frequency, is_active=is_active
    )


# ============================================================================
# NORMALIZATION
# ============================================================================

@pytest.mark.parametrize("raw, expected", [
    ("Metformin", "metformin"),
    ("Metformin ER 500 mg (Glucophage) tablet", "metformin"),
    ("LISINOPRIL 10MG TABLETS", "lisinopril"),
    ("Vitamin D3, capsule", "vitamin d3"),
    ("  Aspirin   81mg  ", "aspirin"),
    ("Insulin glargine (Lantus) 20 units", "insulin glargine"),
    ("Humulin 70/30 (NPH/Regular)", "humulin 70/30"),
    ("Novolog Mix 70 / 30 FlexPen 100 units/ml", "novolog mix flexpen 70/30"),
    (None, ""),
])
def test_normalize_medication_name(raw, expected):
    assert normalize_medication_name(raw) == expected


def test_normalize_dosage():
    assert normalize_dosage("500 mg") == "500mg"
    assert normalize_dosage("500 Milligrams") == "500mg"
    assert normalize_dosage("25 micrograms") == "25mcg"
    assert normalize_dosage("   ") is None
    assert normalize_dosage(None) is None


def test_token_overlap():
    assert token_overlap("insulin glargine", "insulin lispro") == 0.5
    assert token_overlap("", "insulin") == 0.0


def test_brand_generic_floor():
    """Test brand/generic pairs score at least the brand match score"""
    assert medication_name_score("Glucophage", "Metformin") >= 0.85
    assert medication_name_score("Lipitor 20mg", "atorvastatin") >= 0.85
    assert medication_name_score("Aspirin", "Metformin") < 0.7


# ============================================================================
# MEDICATION MATCHING
# ============================================================================

def test_exact_match():
    matcher = MedicationMatcher()
    existing = [med("m1", "Metformin", "500mg")]

    match = matcher.match_against("Metformin", "500mg", existing)

    assert match.match_type == MatchType.EXACT
    assert match.matched.id == "m1"
    assert match.confidence == 1.0


def test_exact_match_ignores_form_and_spacing():
    matcher = MedicationMatcher()
    existing = [med("m1", "metformin tablet", "500 mg")]

    match = matcher.match_against("Metformin", "500mg", existing)

    assert match.match_type == MatchType.EXACT


def test_missing_dosage_counts_as_exact():
    matcher = MedicationMatcher()
    assert matcher.match_against("Metformin", None, [med("m1", "Metformin", "500mg")]).match_type == MatchType.EXACT
    assert matcher.match_against("Metformin", "500mg", [med("m1", "Metformin")]).match_type == MatchType.EXACT


def test_dosage_change():
    matcher = MedicationMatcher()
    existing = [med("m1", "Metformin", "500mg")]

    match = matcher.match_against("Metformin", "1000mg", existing)

    assert match.match_type == MatchType.DOSAGE_CHANGE
    assert match.matched.id == "m1"
    assert match.confidence == 1.0
    assert "1000mg" in match.explanation


def test_premix_ratio_distinguishes_products():
    matcher = MedicationMatcher()
    existing = [med("m1", "Humulin N", "20 units"), med("m2", "Humulin 70/30", "20 units")]

    match = matcher.match_against("Humulin 70/30", "24 units", existing)

    assert match.match_type == MatchType.DOSAGE_CHANGE
    assert match.matched.id == "m2"
    assert matcher.match_against("Humulin 70/30", None, existing[:1]).match_type != MatchType.EXACT


def test_exact_beats_dosage_change():
    """Test an exact candidate wins even if a dosage-change candidate sorts first"""
    matcher = MedicationMatcher()
    existing = [med("a", "Metformin", "500mg"), med("b", "Metformin", "1000mg")]

    match = matcher.match_against("Metformin", "1000mg", existing)

    assert match.match_type == MatchType.EXACT
    assert match.matched.id == "b"


def test_fuzzy_match_with_brand_name():
    matcher = MedicationMatcher()
    match = matcher.match_against("Glucophage", None, [med("m1", "Metformin")])

    assert match.match_type == MatchType.FUZZY
    assert match.matched.id == "m1"
    assert match.confidence >= 0.85


def test_fuzzy_match_with_injected_score():
    """Test the reported confidence is the scorer's score"""
    matcher = MedicationMatcher(scorer=lambda a, b: 0.75)

    match = matcher.match_against("Glucophage", None, [med("m1", "Metformin")])

    assert match.match_type == MatchType.FUZZY
    assert match.confidence == 0.75
    assert "75% similar" in match.explanation


def test_fuzzy_match_on_misspelling():
    matcher = MedicationMatcher()
    match = matcher.match_against("Lisinoprill", "10mg", [med("m1", "Lisinopril", "10mg")])

    assert match.match_type == MatchType.FUZZY
    assert match.confidence > 0.9


def test_no_match_records_near_miss():
    """Test a below-threshold best candidate is kept as nearest"""
    matcher = MedicationMatcher(scorer=lambda a, b: 0.5)

    match = matcher.match_against("Amlodipine", None, [med("m1", "Amiodarone")])

    assert match.match_type == MatchType.NONE
    assert match.matched is None
    assert match.confidence == 0.0
    assert match.nearest.medication.id == "m1"
    assert match.nearest.score == 0.5


def test_no_existing_medications():
    match = MedicationMatcher().match_against("Metformin", "500mg", [])

    assert match.match_type == MatchType.NONE
    assert match.explanation == "No existing medications to match against"


def test_inactive_medications_ignored():
    match = MedicationMatcher().match_against("Metformin", "500mg", [med("m1", "Metformin", "500mg", is_active=False)])
    assert match.match_type == MatchType.NONE


def test_tie_break_by_distance_then_id():
    """Test equal scores resolve by edit distance, then id"""
    matcher = MedicationMatcher(scorer=lambda mention, existing: 0.8)
    existing = [med("c", "Zetaproline"), med("b", "Zetaprox"), med("a", "Zetaprol")]

    match = matcher.match_against("Zetapro", None, existing)

    # "zetaprox" and "zetaprol" are both one edit from "zetapro"; "a" < "b"
    assert match.match_type == MatchType.FUZZY
    assert match.matched.id == "a"


def test_matching_is_idempotent_and_order_independent():
    matcher = MedicationMatcher()
    existing = [med("m2", "Metoprolol", "25mg"), med("m1", "Metformin", "500mg"), med("m3", "Lisinopril", "10mg")]

    first = matcher.match_against("Metoprolo", "25mg", existing)
    second = matcher.match_against("Metoprolo", "25mg", list(reversed(existing)))

    assert first == second
    assert first.matched.id == "m2"


@pytest.mark.asyncio
async def test_match_medication_reads_store(store, family):
    _, patient_id = family
    med_id = store.create_medication(patient_id, "Atorvastatin", "20mg", "daily")

    match = await MedicationMatcher(store).match_medication("Lipitor", "20mg", patient_id)

    assert match.match_type == MatchType.FUZZY
    assert match.matched.id == med_id


# ============================================================================
# ACTIVITY MATCHING
# ============================================================================

def item(item_id, title, description=None):
    return ChecklistItem(
        id=item_id, patient_id="p1", category=ChecklistCategory.EXERCISE.value, title=title, description=description
    )


def test_activity_exact_title():
    match = MedicationMatcher().match_activity_against("Walk 30 minutes", [item("i1", "walk 30 minutes")])

    assert match.match_type == "exact"
    assert match.confidence == 1.0


def test_activity_containment_is_similar():
    """Test a title contained in the recommendation scores 0.8"""
    match = MedicationMatcher().match_activity_against(
        "Walk 30 minutes every morning with a cane",
        [item("i1", "Walk 30 minutes")],
    )

    assert match.match_type == "similar"
    assert match.confidence == 0.8
    assert match.matched.id == "i1"


def test_activity_below_floor():
    match = MedicationMatcher().match_activity_against("Swim laps", [item("i1", "Chair yoga stretches")])
    assert match.match_type == "none"


def test_activity_no_items():
    match = MedicationMatcher().match_activity_against("Walk", [])
    assert match.explanation == "No existing exercise activities to match against"


@pytest.mark.asyncio
async def test_match_activity_reads_exercise_items_only(store, family):
    _, patient_id = family
    store.create_checklist_item(patient_id, ChecklistCategory.DIET.value, "Walk 30 minutes")
    exercise_id = store.create_checklist_item(patient_id, ChecklistCategory.EXERCISE.value, "Walk 30 minutes")

    match = await MedicationMatcher(store).match_activity("Walk 30 minutes", patient_id)

    assert match.matched.id == exercise_id
