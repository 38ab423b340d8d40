# ============================================================================
# src/care_ingestion/constants/__init__.py
# ============================================================================
"""
Convenient imports for all constants
"""

from .care_types import (
    ChecklistCategory,
    MatchType,
    ParsingStatus,
    ProviderType,
    ReconciliationType,
    RecommendationPriority,
    RecommendationStatus,
    RecommendationType,
)
from .medications import (
    BRAND_GENERIC_GROUPS,
    CRITICAL_MEDICATIONS,
    HIGH_PRIORITY_MEDICATIONS,
    levenshtein_distance,
    string_similarity,
)
