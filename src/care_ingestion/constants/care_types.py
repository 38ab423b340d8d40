# ============================================================================
# src/care_ingestion/constants/care_types.py
# ============================================================================
"""
Closed vocabularies shared by the pipeline and the care store.
"""

from enum import Enum


class ParsingStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RecommendationType(str, Enum):
    MEDICATION = "MEDICATION"
    EXERCISE = "EXERCISE"
    DIET = "DIET"
    THERAPY = "THERAPY"
    LIFESTYLE = "LIFESTYLE"
    MONITORING = "MONITORING"
    FOLLOWUP = "FOLLOWUP"
    TESTS = "TESTS"


class RecommendationPriority(str, Enum):
    URGENT = "URGENT"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class RecommendationStatus(str, Enum):
    PENDING = "PENDING"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    IN_PROGRESS = "IN_PROGRESS"
    DISMISSED = "DISMISSED"


class ProviderType(str, Enum):
    PHYSICIAN = "PHYSICIAN"
    SPECIALIST = "SPECIALIST"
    THERAPIST = "THERAPIST"
    PHARMACIST = "PHARMACIST"
    FACILITY = "FACILITY"
    OTHER = "OTHER"


class MatchType(str, Enum):
    EXACT = "exact"
    DOSAGE_CHANGE = "dosage_change"
    FUZZY = "fuzzy"
    NONE = "none"


class ReconciliationType(str, Enum):
    NEW = "new"
    DOSAGE_CHANGE = "dosage_change"
    DISCONTINUED = "discontinued"
    FUZZY_MATCH = "fuzzy_match"


class ChecklistCategory(str, Enum):
    MEDICATION = "MEDICATION"
    EXERCISE = "EXERCISE"
    DIET = "DIET"
    OTHER = "OTHER"
