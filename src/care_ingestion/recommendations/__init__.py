"""Recommendation classification and persistence."""

from .classifier import Classification, classify, classify_priority, classify_type, make_title
from .service import RecommendationService

__all__ = [
    "Classification",
    "classify",
    "classify_priority",
    "classify_type",
    "make_title",
    "RecommendationService",
]
