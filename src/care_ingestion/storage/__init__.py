"""SQLite persistence for the care record and the job queue."""

from .care_store import CareStore
from .records import (
    ChecklistItem,
    Document,
    ExistingMedication,
    JournalEntry,
    Patient,
    Provider,
    Recommendation,
)

__all__ = [
    "CareStore",
    "ChecklistItem",
    "Document",
    "ExistingMedication",
    "JournalEntry",
    "Patient",
    "Provider",
    "Recommendation",
]
