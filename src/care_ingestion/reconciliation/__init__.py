"""Medication matching and reconciliation."""

from .engine import (
    ReconciliationEngine,
    ReconciliationRecommendation,
    ReconciliationResult,
    ReconciliationStats,
)
from .matching import ActivityMatch, MedicationMatch, MedicationMatcher, NearestCandidate

__all__ = [
    "ReconciliationEngine",
    "ReconciliationRecommendation",
    "ReconciliationResult",
    "ReconciliationStats",
    "ActivityMatch",
    "MedicationMatch",
    "MedicationMatcher",
    "NearestCandidate",
]
