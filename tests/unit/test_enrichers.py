# ============================================================================
# FILE: tests/unit/test_enrichers.py
# ============================================================================
"""
Unit tests for provider and journal enrichers
"""

import pytest

from care_ingestion.constants import ProviderType
from care_ingestion.enrichers import (
    EnrichmentContext,
    JournalEnricher,
    ProviderEnricher,
    classify_provider_type,
    parse_address,
)
from care_ingestion.schemas import ExtractionRecord
from care_ingestion.utils.dates import parse_visit_date


@pytest.fixture
def record(sample_extraction):
    return ExtractionRecord.model_validate(sample_extraction)


@pytest.fixture
def context(family, document_id, record):
    family_id, patient_id = family
    return EnrichmentContext(
        family_id=family_id,
        patient_id=patient_id,
        user_id="user-1",
        document_id=document_id,
        record=record,
    )


# ============================================================================
# PROVIDER TYPE
# ============================================================================

@pytest.mark.parametrize("specialty, expected", [
    ("Physical Therapy", ProviderType.THERAPIST),
    ("PT", ProviderType.THERAPIST),
    ("Speech therapy (SLP)", ProviderType.THERAPIST),
    ("Retail Pharmacy", ProviderType.PHARMACIST),
    ("Urgent care clinic", ProviderType.FACILITY),
    ("Cardiology", ProviderType.SPECIALIST),
    ("ENT", ProviderType.SPECIALIST),
    ("Internal Medicine", ProviderType.PHYSICIAN),
    ("Family medicine", ProviderType.PHYSICIAN),
    ("Podiatry", ProviderType.SPECIALIST),
    ("", ProviderType.PHYSICIAN),
    (None, ProviderType.PHYSICIAN),
])
def test_classify_provider_type(specialty, expected):
    assert classify_provider_type(specialty) == expected


# ============================================================================
# ADDRESS PARSING
# ============================================================================

def test_parse_address_single_segment():
    assert parse_address(" 200 Oak Street ") == {"address_line1": "200 Oak Street"}


def test_parse_address_two_segments():
    assert parse_address("200 Oak Street, Springfield") == {
        "address_line1": "200 Oak Street",
        "city": "Springfield",
    }


def test_parse_address_with_state_and_zip():
    assert parse_address("200 Oak Street, Suite 4, Springfield, IL 62704-1234") == {
        "address_line1": "200 Oak Street",
        "city": "Springfield",
        "state": "IL",
        "zip_code": "62704-1234",
    }


def test_parse_address_unrecognized_state():
    parsed = parse_address("1 Main St, Hometown, Illinois")

    assert parsed["city"] == "Hometown"
    assert parsed["state"] is None
    assert parsed["zip_code"] is None


# ============================================================================
# PROVIDER UPSERT
# ============================================================================

@pytest.mark.asyncio
async def test_provider_created(store, context):
    result = await ProviderEnricher(store).enrich(context)

    assert result.created
    provider = store.get_provider(result.entity_id)
    assert provider.name == "Dr. Alan Whitfield"
    assert provider.type == ProviderType.PHYSICIAN.value
    assert provider.specialty == "Internal Medicine"
    assert provider.phone == "555-0142"
    assert provider.facility == "Riverside Family Clinic"
    assert provider.address_line1 == "200 Oak Street"
    assert provider.city == "Springfield"
    assert provider.state == "IL"
    assert provider.zip_code == "62704"


@pytest.mark.asyncio
async def test_provider_update_only_fills_blanks(store, context):
    """Test populated fields survive and an OTHER type is replaced"""
    existing_id = store.create_provider(
        context.family_id,
        "Dr. Alan Whitfield, MD",
        type=ProviderType.OTHER.value,
        specialty="Internal Medicine",
        phone="555-9999",
    )

    result = await ProviderEnricher(store).enrich(context)

    assert result.entity_id == existing_id
    assert not result.created
    provider = store.get_provider(existing_id)
    assert provider.phone == "555-9999"
    assert provider.type == ProviderType.PHYSICIAN.value
    assert provider.city == "Springfield"
    assert store.count_providers(context.family_id) == 1


@pytest.mark.asyncio
async def test_provider_update_keeps_specific_type(store, context):
    existing_id = store.create_provider(
        context.family_id, "Dr. Alan Whitfield", type=ProviderType.SPECIALIST.value, specialty="internal medicine"
    )

    await ProviderEnricher(store).enrich(context)

    assert store.get_provider(existing_id).type == ProviderType.SPECIALIST.value


@pytest.mark.asyncio
async def test_provider_different_specialty_is_new_provider(store, context):
    """Test a same-named provider with another specialty is a different person"""
    store.create_provider(context.family_id, "Dr. Alan Whitfield", specialty="Cardiology")

    result = await ProviderEnricher(store).enrich(context)

    assert result.created
    assert store.count_providers(context.family_id) == 2


@pytest.mark.asyncio
async def test_provider_upsert_is_idempotent(store, context):
    enricher = ProviderEnricher(store)

    first = await enricher.enrich(context)
    second = await enricher.enrich(context)

    assert second.entity_id == first.entity_id
    assert not second.created
    assert store.count_providers(context.family_id) == 1


@pytest.mark.asyncio
async def test_provider_skipped_without_name(store, context):
    context.record.visit.provider.name = "   "

    result = await ProviderEnricher(store).enrich(context)

    assert result.entity_id is None
    assert store.count_providers(context.family_id) == 0


# ============================================================================
# JOURNAL
# ============================================================================

@pytest.mark.asyncio
async def test_journal_entry_created(store, context):
    context.provider_id = "prov-1"

    result = await JournalEnricher(store).enrich(context)

    entry = store.get_journal_entry(result.entity_id)
    assert entry.title == "Visit with Dr. Alan Whitfield"
    assert entry.content.startswith("Follow-up for type 2 diabetes")
    assert entry.content.endswith("Follow-up: Return in 3 months")
    assert entry.entry_date == "2024-03-14"
    assert entry.source_document_id == context.document_id
    assert entry.provider_id == "prov-1"
    assert entry.patient_id == context.patient_id


@pytest.mark.asyncio
async def test_journal_entry_once_per_document(store, context):
    enricher = JournalEnricher(store)

    first = await enricher.enrich(context)
    second = await enricher.enrich(context)

    assert first.created
    assert not second.created
    assert second.entity_id == first.entity_id
    assert store.get_document_processing_summary(context.document_id)["journal_entries"] == [
        store.get_journal_entry(first.entity_id)
    ]


@pytest.mark.asyncio
async def test_journal_skipped_without_summary(store, context):
    context.record.visit.summary = None

    result = await JournalEnricher(store).enrich(context)

    assert result.entity_id is None


@pytest.mark.asyncio
async def test_journal_title_falls_back_to_facility(store, context):
    context.record.visit.provider.name = None

    result = await JournalEnricher(store).enrich(context)

    assert store.get_journal_entry(result.entity_id).title == "Visit at Riverside Family Clinic"


# ============================================================================
# VISIT DATES
# ============================================================================

@pytest.mark.parametrize("raw, expected", [
    ("2024-03-14", "2024-03-14"),
    ("2024-03-14T10:30:00Z", "2024-03-14"),
    ("03/14/2024", "2024-03-14"),
    ("3/4/2024", "2024-03-04"),
    ("02/30/2024", None),
    ("March 14, 2024", None),
    ("", None),
    (None, None),
])
def test_parse_visit_date(raw, expected):
    assert parse_visit_date(raw) == expected
