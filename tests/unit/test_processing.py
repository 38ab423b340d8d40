# ============================================================================
# FILE: tests/unit/test_processing.py
# ============================================================================
"""
Unit tests for post-parse processing (auto-population)
"""

import pytest

from care_ingestion.constants import ChecklistCategory
from care_ingestion.pipeline import DocumentProcessingService, MatchedRecommendation, ProcessingResult
from care_ingestion.pipeline import build_summary_message
from care_ingestion.pipeline.processing import (
    SUMMARY_DEGRADED,
    SUMMARY_EMPTY,
    SUMMARY_NO_PATIENT,
    extract_dosage,
    extract_medication_name,
)
from care_ingestion.reconciliation import ActivityMatch, ReconciliationStats
from care_ingestion.schemas import ExtractionRecord


@pytest.fixture
def record(sample_extraction):
    return ExtractionRecord.model_validate(sample_extraction)


# ============================================================================
# SUMMARY MESSAGE
# ============================================================================

def test_summary_empty():
    assert build_summary_message(ProcessingResult()) == SUMMARY_EMPTY


def test_summary_full():
    result = ProcessingResult(
        provider_id="prov-1",
        provider_created=True,
        journal_entry_id="j-1",
        recommendation_ids=["r1", "r2", "r3"],
        reconciliation_stats=ReconciliationStats(
            total_document_meds=4, dosage_changes=1, new_medications=2, discontinued_medications=1
        ),
        matched_recommendations=[
            MatchedRecommendation("r1", "EXERCISE", "Walk", activity_match=ActivityMatch("exact", None, 1.0, "")),
            MatchedRecommendation("r2", "DIET", "Eat"),
        ],
    )

    assert build_summary_message(result) == (
        "Added provider to contacts, Created journal entry from visit, "
        "Medication check: 1 dosage change, 2 new medications, 1 potentially discontinued, "
        "Found 3 recommendations, (1 matched existing items)"
    )


def test_summary_updated_provider_single_recommendation():
    result = ProcessingResult(provider_id="prov-1", provider_created=False, recommendation_ids=["r1"])

    assert build_summary_message(result) == "Updated provider information, Found 1 recommendation"


def test_summary_omits_quiet_medication_check():
    """Test a reconciliation with only exact matches adds no medication clause"""
    result = ProcessingResult(reconciliation_stats=ReconciliationStats(total_document_meds=2, exact_matches=2))

    assert build_summary_message(result) == SUMMARY_EMPTY


# ============================================================================
# RECOMMENDATION TEXT HEURISTICS
# ============================================================================

@pytest.mark.parametrize("text, name", [
    ("Start Lisinopril 10mg once daily", "Lisinopril"),
    ("continue metformin as prescribed", "metformin"),
    ("Atorvastatin 20 mg nightly", "Atorvastatin"),
    ("Aspirin daily", "Aspirin"),
])
def test_extract_medication_name(text, name):
    assert extract_medication_name(text) == name


def test_extract_dosage():
    assert extract_dosage("Start Lisinopril 10mg once daily") == "10mg"
    assert extract_dosage("Take 2.5 mg at night") == "2.5 mg"
    assert extract_dosage("Drink more water") is None


# ============================================================================
# AUTO-POPULATION
# ============================================================================

@pytest.mark.asyncio
async def test_process_after_parsing(store, family, document_id, record):
    family_id, patient_id = family
    store.create_medication(patient_id, "Metformin", "500mg", "twice daily")

    result = await DocumentProcessingService(store).process_after_parsing(
        document_id, family_id, "user-1", record
    )

    assert result.enrichment_errors == []
    assert result.provider_created
    assert result.journal_entry_id is not None
    assert result.reconciliation_stats.dosage_changes == 1
    assert result.reconciliation_stats.new_medications == 1
    assert len(result.reconciliation_recommendation_ids) == 2
    assert len(result.recommendation_ids) == 3
    assert result.summary == (
        "Added provider to contacts, Created journal entry from visit, "
        "Medication check: 1 dosage change, 1 new medication, Found 3 recommendations"
    )

    summary = store.get_document_processing_summary(document_id)
    assert summary["total_items"] == 1 + 2 + 3
    assert all(rec.provider_id == result.provider_id for rec in summary["recommendations"])
    assert all(rec.visit_date == "2024-03-14" for rec in summary["recommendations"])


@pytest.mark.asyncio
async def test_smart_matching_links_existing_items(store, family, document_id, record):
    family_id, patient_id = family
    store.create_medication(patient_id, "Metformin", "1000mg")
    lisinopril_id = store.create_medication(patient_id, "Lisinopril", "10mg")
    walk_id = store.create_checklist_item(patient_id, ChecklistCategory.EXERCISE.value, "Walk 30 minutes daily")

    result = await DocumentProcessingService(store).process_after_parsing(
        document_id, family_id, "user-1", record
    )

    matched = {m.type: m for m in result.matched_recommendations if m.has_match}
    assert set(matched) == {"MEDICATION", "EXERCISE"}
    assert matched["MEDICATION"].medication_match.matched.id == lisinopril_id
    assert matched["EXERCISE"].activity_match.matched.id == walk_id
    assert result.summary.endswith("Found 3 recommendations, (2 matched existing items)")
    assert result.to_dict()["matched_recommendations"] == 2

    medication_rec, exercise_rec = (
        store.get_recommendations([matched["MEDICATION"].recommendation_id, matched["EXERCISE"].recommendation_id])
    )
    assert medication_rec.linked_medication_id == lisinopril_id
    assert medication_rec.match_type == "exact"
    assert exercise_rec.linked_checklist_item_id == walk_id
    assert exercise_rec.match_confidence == 1.0


@pytest.mark.asyncio
async def test_no_patient_skips_auto_population(store, record):
    family_id = store.create_family("Empty family")
    document_id = store.create_document(family_id, "user-1", "https://files.example.com/a.pdf", "application/pdf")

    result = await DocumentProcessingService(store).process_after_parsing(document_id, family_id, "user-1", record)

    assert result.summary == SUMMARY_NO_PATIENT
    assert store.count_providers(family_id) == 0
    assert store.get_document_processing_summary(document_id)["total_items"] == 0


@pytest.mark.asyncio
async def test_failing_step_degrades_summary(store, family, document_id, record, monkeypatch):
    """Test one failing step is recorded while the other steps still run"""
    family_id, _ = family
    service = DocumentProcessingService(store)

    async def broken_enrich(context):
        raise RuntimeError("provider table unavailable")

    monkeypatch.setattr(service.provider_enricher, "enrich", broken_enrich)

    result = await service.process_after_parsing(document_id, family_id, "user-1", record)

    assert result.summary == SUMMARY_DEGRADED
    assert result.enrichment_errors == ["provider: RuntimeError: provider table unavailable"]
    assert result.provider_id is None
    assert result.journal_entry_id is not None
    assert len(result.recommendation_ids) == 3


@pytest.mark.asyncio
async def test_failed_reconciliation_degrades_summary(store, family, document_id, record, monkeypatch):
    family_id, _ = family
    service = DocumentProcessingService(store)

    def locked(patient_id):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(store, "list_active_medications", locked)

    result = await service.process_after_parsing(document_id, family_id, "user-1", record)

    assert result.summary == SUMMARY_DEGRADED
    assert result.reconciliation_recommendation_ids == []
    assert result.reconciliation_stats.new_medications == 0
    assert result.enrichment_errors[0].startswith("reconciliation: RuntimeError")


@pytest.mark.asyncio
async def test_patient_lookup_failure(store, family, document_id, record, monkeypatch):
    family_id, _ = family

    def broken(family_id):
        raise RuntimeError("disk I/O error")

    monkeypatch.setattr(store, "get_patient_for_family", broken)

    result = await DocumentProcessingService(store).process_after_parsing(document_id, family_id, "user-1", record)

    assert result.summary == SUMMARY_DEGRADED
    assert result.enrichment_errors == ["patient lookup: RuntimeError: disk I/O error"]
