# ============================================================================
# src/care_ingestion/storage/records.py
# ============================================================================
"""
Rows of the care store as plain dataclasses.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..constants import ParsingStatus, ProviderType, RecommendationStatus


@dataclass
class Patient:
    id: str
    family_id: str
    name: str
    date_of_birth: Optional[str] = None
    is_active: bool = True


@dataclass
class Document:
    id: str
    family_id: str
    user_id: str
    file_url: str
    file_type: str
    file_name: Optional[str] = None
    parsing_status: str = ParsingStatus.PENDING.value
    parsed_data: Optional[Dict[str, Any]] = None
    processing_summary: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class ExistingMedication:
    """A patient's persisted medication. Read-only for the pipeline."""
    id: str
    patient_id: str
    name: str
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    is_active: bool = True


@dataclass
class Provider:
    id: str
    family_id: str
    name: str
    type: str = ProviderType.OTHER.value
    specialty: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    fax: Optional[str] = None
    facility: Optional[str] = None
    department: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    is_active: bool = True


@dataclass
class JournalEntry:
    id: str
    family_id: str
    user_id: str
    content: str
    patient_id: Optional[str] = None
    title: Optional[str] = None
    source_document_id: Optional[str] = None
    provider_id: Optional[str] = None
    entry_date: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class Recommendation:
    id: str
    family_id: str
    patient_id: str
    type: str
    title: str
    description: str
    priority: str
    status: str = RecommendationStatus.PENDING.value
    document_id: Optional[str] = None
    provider_id: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None
    visit_date: Optional[str] = None
    linked_medication_id: Optional[str] = None
    linked_checklist_item_id: Optional[str] = None
    match_type: Optional[str] = None
    match_confidence: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None


@dataclass
class ChecklistItem:
    id: str
    patient_id: str
    category: str
    title: str
    description: Optional[str] = None
    is_active: bool = True
